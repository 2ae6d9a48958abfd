"""Self-hosted JWT authentication for the B2B starter API."""

__version__ = "1.0.0"
