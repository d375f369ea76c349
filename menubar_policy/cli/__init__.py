"""Command-line interface for menubar-policy."""

from .commands import cli_main

__all__ = ["cli_main"]
