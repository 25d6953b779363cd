"""HTTP API for the entity screening service."""
