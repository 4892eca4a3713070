"""Application build runners."""
