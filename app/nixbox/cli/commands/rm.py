"""Remove command implementation.

Removes packages from devbox.json and uninstalls them from the profile.
"""

from typing import Annotated

import typer
from rich.markup import escape

from nixbox.cli.common import devbox_session, is_quiet
from nixbox.utils.formatting import print_success


def rm(
    ctx: typer.Context,
    packages: Annotated[
        list[str],
        typer.Argument(help="Packages to remove, by name or as declared."),
    ],
) -> None:
    """Remove packages from the project.

    Names that are not declared are reported and skipped.

    Examples:
        nixbox rm ripgrep
        nixbox rm python nodejs
    """
    with devbox_session(ctx) as box:
        result = box.remove(*packages)

    removed = [name for name in dict.fromkeys(packages) if name not in result.undeclared]
    if removed and not is_quiet(ctx):
        print_success(f"Removed {escape(', '.join(removed))}.")
