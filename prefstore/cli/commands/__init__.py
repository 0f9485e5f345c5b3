"""CLI commands module."""

from . import backups, migrate, settings

__all__ = ["backups", "migrate", "settings"]
