"""Error taxonomy for package reconciliation.

All errors raised by the reconciliation engine derive from NixboxError so
the CLI can report them uniformly. External process failures keep the
tool's own diagnostic text as the message.
"""

from __future__ import annotations


class NixboxError(Exception):
    """Base exception for nixbox errors."""


class ValidationError(NixboxError):
    """Raised when a declared package fails validation before any mutation."""


class ResolutionError(NixboxError):
    """Raised when the resolving authority cannot resolve a reference."""


class PackageNotFoundError(ValidationError, ResolutionError):
    """Raised when a package does not exist in the resolving authority."""

    def __init__(self, raw: str) -> None:
        super().__init__(f"Package not found: {raw}")
        self.raw = raw


class PackageNotInManifestError(NixboxError):
    """Raised when a by-name lookup finds no declared package."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Package {name} is not declared in devbox.json")
        self.name = name


class AmbiguousMatchError(NixboxError):
    """Raised when a by-name lookup matches more than one declared package."""

    def __init__(self, name: str, matches: list[str]) -> None:
        joined = ", ".join(matches)
        super().__init__(f"Package name {name} is ambiguous, it matches: {joined}")
        self.name = name
        self.matches = matches


class ExternalProcessError(NixboxError):
    """Raised when an external process exits with a non-zero status.

    The message is the trimmed combined output of the process so the
    external tool's diagnostic reaches the user verbatim.

    Attributes:
        cmd: Command that was executed.
        returncode: Exit code of the process.
        output: Trimmed combined stdout/stderr.
    """

    def __init__(self, cmd: list[str], returncode: int, output: str) -> None:
        self.cmd = cmd
        self.returncode = returncode
        self.output = output.strip()
        super().__init__(self.output or f"{cmd[0]} exited with status {returncode}")


class LockfileError(NixboxError):
    """Raised when the lockfile cannot be read or written."""


class PluginError(NixboxError):
    """Raised when a plugin fails to regenerate its files."""
