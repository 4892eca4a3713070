"""deployctl — resumable, self-healing installer for a single web application."""

__version__ = "0.1.0"
