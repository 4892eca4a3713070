"""Subprocess plumbing shared by the real adapters."""
