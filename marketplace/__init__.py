"""Brand/creator marketplace workflow service."""

__version__ = "0.1.0"
