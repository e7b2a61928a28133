"""Per-user content visibility service for a multi-instance media library."""

__version__ = "0.1.0"
