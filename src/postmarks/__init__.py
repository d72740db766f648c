"""Postmarks: save links by email and find them again by meaning."""

__version__ = "0.1.0"
