"""Keyword trends research workspace with local/remote synchronization."""

__version__ = "1.0.0"
