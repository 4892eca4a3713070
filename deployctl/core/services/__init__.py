"""Helpers shared by provisioners and diagnostics."""
