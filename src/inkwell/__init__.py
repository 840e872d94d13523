"""Inkwell — private, AI-assisted journaling core."""

__version__ = "0.1.0"
