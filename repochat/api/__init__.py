"""HTTP API for the repository chat service."""
