"""CLI commands for nixbox.

This package contains all subcommand implementations.
"""

from nixbox.cli.commands import add, generate, init, install, listing, rm

__all__ = ["add", "generate", "init", "install", "listing", "rm"]
