"""Backend services, handlers and models."""
