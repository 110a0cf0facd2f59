"""Shared helpers for CLI commands."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.markup import escape

from nixbox.core.config import find_project_dir
from nixbox.core.devbox import Devbox
from nixbox.core.errors import NixboxError
from nixbox.core.paths import CONFIG_FILENAME
from nixbox.utils.formatting import err_console, print_error


def config_path_option(ctx: typer.Context) -> Path | None:
    """The --config value given to the root command, if any."""
    obj = ctx.find_root().obj or {}
    return obj.get("config")


def get_project_dir(ctx: typer.Context) -> Path:
    """Locate the project for a command.

    --config may name the project directory or its devbox.json. Without
    it, the nearest devbox.json above the working directory is used.

    Raises:
        ConfigNotFoundError: If no project can be found.
    """
    config = config_path_option(ctx)
    if config is None:
        return find_project_dir()
    if config.name == CONFIG_FILENAME:
        config = config.parent
    return find_project_dir(config)


def is_quiet(ctx: typer.Context) -> bool:
    obj = ctx.find_root().obj or {}
    return bool(obj.get("quiet"))


@contextmanager
def devbox_session(ctx: typer.Context) -> Iterator[Devbox]:
    """Open the project for a command and report domain errors.

    Domain errors and directory creation failures are printed as
    ``Error: ...`` and end the command with exit code 1.
    """
    try:
        with Devbox.open(get_project_dir(ctx), writer=err_console) as box:
            yield box
    except typer.Exit:
        raise
    except (NixboxError, RuntimeError) as e:
        print_error(escape(str(e)))
        raise typer.Exit(code=1) from e
