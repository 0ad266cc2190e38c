"""Command-line interface."""

from hostforge.cli.main import cli

__all__ = ["cli"]
