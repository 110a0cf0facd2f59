"""nixbox command line.

Global options are parsed here and stored on the root context, where
``nixbox.cli.common`` reads them back for each command.
"""

from pathlib import Path
from typing import Annotated

import typer

from nixbox import __version__
from nixbox.cli.commands import add, generate, init, install, listing, rm
from nixbox.cli.logging_setup import init_logging

app = typer.Typer(
    name="nixbox",
    help="Reproducible per-project package sets on Nix.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _show_version(value: bool) -> None:
    if not value:
        return
    typer.echo(f"nixbox version {__version__}")
    raise typer.Exit()


VersionFlag = Annotated[
    bool | None,
    typer.Option("--version", "-V", callback=_show_version, is_eager=True, help="Show version."),
]
VerboseFlag = Annotated[bool, typer.Option("--verbose", "-v", help="Log debug details.")]
QuietFlag = Annotated[bool, typer.Option("--quiet", "-q", help="Only print errors.")]
ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Project directory or path to its devbox.json."),
]


@app.callback()
def main(
    ctx: typer.Context,
    version: VersionFlag = None,
    verbose: VerboseFlag = False,
    quiet: QuietFlag = False,
    config: ConfigOption = None,
) -> None:
    """Declare packages in devbox.json; nixbox keeps the project's Nix
    profile and devbox.lock in step with it.
    """
    init_logging(verbose=verbose, quiet=quiet)
    ctx.obj = {"verbose": verbose, "quiet": quiet, "config": config}


app.command(name="init")(init.init_project)
app.command(name="add")(add.add)
app.command(name="rm")(rm.rm)
app.add_typer(install.app, name="install")
app.add_typer(listing.app, name="list")
app.add_typer(generate.app, name="generate")


if __name__ == "__main__":
    app()
