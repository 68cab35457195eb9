"""Managed-account credential rotation across a directory and a platform."""

__version__ = "0.1.0"
