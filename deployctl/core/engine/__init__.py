"""Phase controller."""
