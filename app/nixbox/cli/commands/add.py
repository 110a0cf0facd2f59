"""Add command implementation.

Declares packages in devbox.json and installs them into the project profile.
"""

from typing import Annotated

import typer
from rich.markup import escape

from nixbox.cli.common import devbox_session, is_quiet
from nixbox.utils.formatting import print_success


def add(
    ctx: typer.Context,
    packages: Annotated[
        list[str],
        typer.Argument(help="Packages to add, e.g. hello, python@3.11 or github:org/repo#pkg."),
    ],
) -> None:
    """Add packages to the project.

    A package already declared under the same name is replaced.

    Examples:
        nixbox add ripgrep
        nixbox add python@3.11 nodejs@20
    """
    with devbox_session(ctx) as box:
        box.add(*packages)

    if not is_quiet(ctx):
        print_success(f"Added {escape(', '.join(packages))} to devbox.json.")
