"""Shared helpers used by both the backend and the frontends."""
