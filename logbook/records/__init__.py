"""Generic record access module."""
