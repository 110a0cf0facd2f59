"""Running external tools.

nix and mutagen are driven through their CLIs. Callers decide what a
non-zero exit means, so run_command never raises for one.
"""

import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured streams and exit status of a finished process."""

    stdout: str
    stderr: str
    returncode: int

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """What the tool printed, both streams, with blank edges stripped.

        This is the text shown to the user when the tool fails.
        """
        streams = [text.strip() for text in (self.stdout, self.stderr)]
        return "\n".join(text for text in streams if text)


def run_command(
    args: list[str],
    *,
    timeout: float | None = DEFAULT_TIMEOUT,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """Run a tool to completion and capture its output as text.

    Args:
        args: argv of the tool; no shell is involved.
        timeout: Seconds before the process is killed. None waits forever.
        cwd: Working directory, the current one if None.
        env: Full environment of the child. None inherits ours.

    Raises:
        subprocess.TimeoutExpired: The tool ran past timeout.
        FileNotFoundError: The executable does not exist.
    """
    logger.debug("exec %s", shlex.join(args))
    proc = subprocess.run(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        cwd=cwd,
        env=env,
    )
    result = CommandResult(proc.stdout, proc.stderr, proc.returncode)
    if not result.success:
        logger.debug("%s exited %d: %s", args[0], result.returncode, result.stderr.strip())
    return result


def command_exists(name: str) -> bool:
    """True if ``name`` resolves to an executable on PATH."""
    return shutil.which(name) is not None
