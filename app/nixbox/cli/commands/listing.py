"""nixbox list: declared packages and what devbox.lock pins them to."""

import json
from enum import Enum
from typing import Annotated

import typer

from nixbox.cli.common import devbox_session
from nixbox.utils.formatting import (
    console,
    create_package_table,
    format_package_row,
    print_info,
)

app = typer.Typer(
    help="List the packages declared in devbox.json.",
    invoke_without_command=True,
)


class ListFormat(str, Enum):
    TABLE = "table"
    JSON = "json"


@app.callback(invoke_without_command=True)
def list_packages(
    ctx: typer.Context,
    output_format: Annotated[
        ListFormat,
        typer.Option("--format", "-f", case_sensitive=False, help="table or json."),
    ] = ListFormat.TABLE,
) -> None:
    """List declared packages in priority order.

    JSON output is a list of {package, version, resolved} objects with
    null version and resolved for packages not yet locked.
    """
    if ctx.invoked_subcommand is not None:
        return

    with devbox_session(ctx) as box:
        locked = [(ref, box.lockfile.entry_for(ref)) for ref in box.packages()]

    if output_format is ListFormat.JSON:
        payload = [
            {
                "package": ref.raw,
                "version": entry and entry.version,
                "resolved": entry and entry.resolved,
            }
            for ref, entry in locked
        ]
        console.print_json(json.dumps(payload))
    elif not locked:
        print_info("No packages declared. Add one with 'nixbox add'.")
    else:
        table = create_package_table()
        for ref, entry in locked:
            table.add_row(*format_package_row(ref, entry))
        console.print(table)
