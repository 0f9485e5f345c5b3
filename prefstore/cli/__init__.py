"""Command-line interface for prefstore."""

from .main import cli, main

__all__ = ["cli", "main"]
