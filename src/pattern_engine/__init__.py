"""Ranked-pattern extraction of event fields with correction-driven confidence."""

__version__ = "0.1.0"
