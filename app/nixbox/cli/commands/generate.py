"""Generate commands.

Writes supporting files for running the project in containers or with
direnv.
"""

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape

from nixbox.cli.common import devbox_session, is_quiet
from nixbox.generate import (
    envrc_content,
    generate_devcontainer,
    generate_dockerfile,
    generate_envrc,
)
from nixbox.utils.formatting import console, print_success

app = typer.Typer(
    help="Generate supporting files for your project.",
    no_args_is_help=True,
)

ForceOption = Annotated[
    bool,
    typer.Option("--force", "-f", help="Overwrite existing files."),
]


def _report(ctx: typer.Context, paths: list[Path]) -> None:
    if is_quiet(ctx):
        return
    for path in paths:
        print_success(f"Generated {escape(str(path))}")


@app.command()
def dockerfile(ctx: typer.Context, force: ForceOption = False) -> None:
    """Generate a Dockerfile that installs the project's packages."""
    with devbox_session(ctx) as box:
        path = generate_dockerfile(box.project_dir, force=force)
    _report(ctx, [path])


@app.command()
def devcontainer(ctx: typer.Context, force: ForceOption = False) -> None:
    """Generate Dockerfile and devcontainer.json under .devcontainer/."""
    with devbox_session(ctx) as box:
        paths = generate_devcontainer(box.project_dir, box.packages(), force=force)
    _report(ctx, paths)


@app.command()
def direnv(
    ctx: typer.Context,
    force: ForceOption = False,
    print_envrc: Annotated[
        bool,
        typer.Option(
            "--print-envrc",
            "-p",
            hidden=True,
            help="Print the .envrc content instead of writing it.",
        ),
    ] = False,
) -> None:
    """Generate a .envrc file that integrates direnv with this project."""
    if print_envrc:
        console.print(envrc_content(), markup=False, highlight=False, end="")
        return

    with devbox_session(ctx) as box:
        path = generate_envrc(box.project_dir, force=force)
    _report(ctx, [path])
