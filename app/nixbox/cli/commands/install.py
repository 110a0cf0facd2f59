"""Install command implementation.

Converges the project profile to devbox.json.
"""

import typer

from nixbox.cli.common import devbox_session, is_quiet
from nixbox.utils.formatting import print_info, print_success

app = typer.Typer(
    help="Install all packages declared in devbox.json.",
    invoke_without_command=True,
)


@app.callback(invoke_without_command=True)
def install(ctx: typer.Context) -> None:
    """Install declared packages and remove undeclared ones.

    Resolves any package missing from devbox.lock first. Does nothing
    when neither devbox.json, devbox.lock nor the profile changed since
    the last successful run.
    """
    if ctx.invoked_subcommand is not None:
        return

    with devbox_session(ctx) as box:
        result = box.ensure()

    if is_quiet(ctx):
        return
    if result.skipped:
        print_info("Packages are already up to date.")
    else:
        print_success("Finished installing packages.")
