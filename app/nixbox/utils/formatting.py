"""Console output for the CLI.

Results go to stdout through ``console``; progress, warnings and errors go
to stderr through ``err_console`` so ``nixbox list --format json`` stays
parseable.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

from nixbox.core.theme import get_theme

if TYPE_CHECKING:
    from nixbox.models.lockfile import LockEntry
    from nixbox.models.package import PackageReference


def _color_system() -> str | None:
    # Hex theme colors need truecolor; leave pipes and CI to Rich
    return "truecolor" if sys.stdout.isatty() else None


console = Console(theme=get_theme(), color_system=_color_system())
err_console = Console(theme=get_theme(), stderr=True, color_system=_color_system())


def create_package_table() -> Table:
    """Empty table with Package, Version and Resolved columns."""
    table = Table(
        title="Packages",
        header_style="bold_header",
        border_style="border",
        row_styles=["", "on grey7"],
    )
    table.add_column("Package", style="package.name", no_wrap=True)
    table.add_column("Version", style="package.version")
    table.add_column("Resolved", style="muted", overflow="ellipsis")
    return table


def format_package_row(
    reference: PackageReference, entry: LockEntry | None
) -> tuple[str, str, str]:
    """Cells for one declared package.

    A package missing from devbox.lock shows as unlocked.
    """
    if entry is None:
        return reference.raw, "[warning]unlocked[/]", "-"
    return reference.raw, entry.version or "-", entry.resolved


def print_info(message: str) -> None:
    console.print(f"[info]{message}[/]")


def print_success(message: str) -> None:
    console.print(f"[success]{message}[/]")


def print_error(message: str) -> None:
    """Print ``Error: message`` to stderr."""
    err_console.print(f"[error]Error:[/] {message}")
