"""Local-first data layer for the sailing logbook."""

__version__ = "0.1.0"
