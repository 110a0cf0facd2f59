"""Logging bootstrap for the CLI.

Installs a single Rich handler on the ``nixbox`` logger. The level is
WARNING by default, DEBUG with --verbose and ERROR with --quiet;
NIXBOX_LOG_LEVEL overrides all of them.
"""

import logging
import os

from rich.logging import RichHandler

from nixbox.utils.formatting import err_console

ENV_LOG_LEVEL = "NIXBOX_LOG_LEVEL"


def resolve_level(verbose: bool = False, quiet: bool = False) -> int:
    """Pick the log level from flags and the environment."""
    override = os.environ.get(ENV_LOG_LEVEL, "").strip().upper()
    if override:
        level = logging.getLevelName(override)
        if isinstance(level, int):
            return level
    if verbose:
        return logging.DEBUG
    if quiet:
        return logging.ERROR
    return logging.WARNING


def init_logging(verbose: bool = False, quiet: bool = False) -> None:
    logger = logging.getLogger("nixbox")
    logger.setLevel(resolve_level(verbose, quiet))
    # Repeated invocations in one process must not stack handlers
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    logger.addHandler(
        RichHandler(
            console=err_console,
            show_time=verbose,
            show_path=verbose,
            markup=False,
            rich_tracebacks=verbose,
        )
    )
