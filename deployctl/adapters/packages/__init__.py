"""System package installers."""
