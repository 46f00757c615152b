"""Flint - a command-line interface for managing platform environments."""

__version__ = "0.1.0"
