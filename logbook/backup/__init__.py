"""Backup and restore module."""
