"""Service managers."""
