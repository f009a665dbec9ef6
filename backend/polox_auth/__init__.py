"""Polo X session-bound authentication and authorization core."""

__version__ = "1.0.0"
