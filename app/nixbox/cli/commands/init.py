"""Init command implementation.

Creates an empty devbox.json in the project directory.
"""

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape

from nixbox.core.config import ConfigError, init_config
from nixbox.utils.formatting import print_error, print_info, print_success


def init_project(
    ctx: typer.Context,
    directory: Annotated[
        Path | None,
        typer.Argument(help="Project directory. Defaults to --config or the current directory."),
    ] = None,
) -> None:
    """Initialize a project.

    Examples:
        nixbox init            # devbox.json in the current directory
        nixbox init ./backend  # devbox.json in ./backend
    """
    root = ctx.find_root().obj or {}
    project_dir = directory or root.get("config") or Path.cwd()
    if project_dir.name == "devbox.json":
        project_dir = project_dir.parent

    try:
        path, created = init_config(project_dir)
    except ConfigError as e:
        print_error(escape(str(e)))
        raise typer.Exit(code=1) from e

    if created:
        print_success(f"Created {escape(str(path))}")
    else:
        print_info(f"{escape(str(path))} already exists")
