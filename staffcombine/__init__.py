"""Combine the voices of several staves into a single staff."""

__version__ = "0.1.0"
