"""CLI package for nixbox.

This package contains the Typer application and all subcommands.
"""

from nixbox.cli.main import app

__all__ = ["app"]
