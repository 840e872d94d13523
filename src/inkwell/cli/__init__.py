"""Inkwell command-line interface."""
