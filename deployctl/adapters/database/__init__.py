"""Database administration adapters."""
