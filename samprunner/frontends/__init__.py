"""Frontends for SA-MP Runner."""
