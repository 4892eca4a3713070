"""Configuration loading (deploy.yml)."""
