"""Validate, score and execute node-based workflow graphs."""

__version__ = "1.0.0"
