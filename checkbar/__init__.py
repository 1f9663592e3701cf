"""Checkbar: periodic shell checks with live status."""

__version__ = "0.1.0"
