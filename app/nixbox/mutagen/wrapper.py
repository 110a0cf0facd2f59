"""Mutagen CLI wrapper.

Each method runs one blocking ``mutagen sync`` command. A non-zero exit
raises MutagenError carrying mutagen's own trimmed output.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from nixbox.core.errors import NixboxError
from nixbox.core.settings import Settings, load_settings
from nixbox.mutagen.models import Session, SessionSpec
from nixbox.utils.shell import CommandResult, run_command

logger = logging.getLogger(__name__)

# Mutagen treats a command run with this set as a prompter invocation
PROMPTER_ENV = "MUTAGEN_PROMPTER"

# Compatibility shim: mutagen exits non-zero with this text when a name
# filter matches nothing. The listing treats it as an empty result. Keep
# the substring exact; it couples us to mutagen's wording.
NO_SESSIONS_MARKER = "unable to locate requested sessions"

_SESSIONS = TypeAdapter(list[Session])


class MutagenError(NixboxError):
    """Raised when mutagen is missing or a mutagen command fails."""


def validate_spec(spec: SessionSpec) -> None:
    """Check that a session spec can be created.

    Raises:
        MutagenError: If either endpoint path is missing.
    """
    if not spec.alpha_path or not spec.beta_path:
        msg = "alpha_path and beta_path are both required"
        raise MutagenError(msg)


def build_env(env_vars: dict[str, str] | None = None) -> dict[str, str]:
    """Environment for a mutagen command.

    The current environment without MUTAGEN_PROMPTER, overlaid by the
    caller's variables.
    """
    env = {key: value for key, value in os.environ.items() if key != PROMPTER_ENV}
    env.update(env_vars or {})
    return env


class Mutagen:
    """Runs mutagen sync commands.

    Attributes:
        binary: Path or name of the mutagen executable.
    """

    # Timeout for one mutagen command (5 minutes)
    _TIMEOUT: float = 300.0

    def __init__(self, binary: str | None = None) -> None:
        self.binary = binary or "mutagen"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> Mutagen:
        """Use mutagen_path from the user settings, or PATH when unset."""
        settings = settings or load_settings()
        return cls(settings.mutagen_path)

    def is_available(self) -> bool:
        """Check if the mutagen binary can be found."""
        return shutil.which(self.binary) is not None

    def create(self, spec: SessionSpec) -> None:
        """Create a sync session.

        Raises:
            MutagenError: If the spec is invalid or mutagen fails.
        """
        validate_spec(spec)

        args = ["sync", "create", spec.alpha, spec.beta]
        if spec.name:
            args.extend(["--name", spec.name])
        if spec.paused:
            args.append("--paused")
        for key, value in spec.labels.items():
            args.extend(["--label", f"{key}={value}"])
        args.extend(["--sync-mode", spec.effective_sync_mode])
        if spec.ignore_vcs:
            args.append("--ignore-vcs")

        self._exec(args, spec.env_vars)

    def list_sessions(
        self, env_vars: dict[str, str] | None = None, *names: str
    ) -> list[Session]:
        """List sync sessions, optionally filtered by name.

        Returns:
            Sessions reported by mutagen. Empty if none match the names.

        Raises:
            MutagenError: If mutagen fails or prints invalid JSON.
        """
        result = self._run(["sync", "list", "--template", "{{json .}}", *names], env_vars)
        if not result.success:
            if NO_SESSIONS_MARKER in result.output:
                return []
            raise MutagenError(result.output)

        if not result.stdout.strip():
            return []
        try:
            return _SESSIONS.validate_python(json.loads(result.stdout))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise MutagenError(f"Invalid session list from mutagen: {e}") from e

    def pause(self, *names: str) -> None:
        self._exec(["sync", "pause", *names])

    def resume(self, env_vars: dict[str, str] | None = None, *names: str) -> None:
        self._exec(["sync", "resume", *names], env_vars)

    def flush(self, *names: str) -> None:
        self._exec(["sync", "flush", *names])

    def reset(self, env_vars: dict[str, str] | None = None, *names: str) -> None:
        self._exec(["sync", "reset", *names], env_vars)

    def terminate(
        self,
        env_vars: dict[str, str] | None = None,
        labels: dict[str, str] | None = None,
        *names: str,
    ) -> None:
        """Terminate sessions selected by label and/or name."""
        args = ["sync", "terminate"]
        for key, value in (labels or {}).items():
            args.extend(["--label-selector", f"{key}={value}"])
        args.extend(names)
        self._exec(args, env_vars)

    def _exec(self, args: list[str], env_vars: dict[str, str] | None = None) -> None:
        result = self._run(args, env_vars)
        if not result.success:
            raise MutagenError(result.output or f"mutagen exited with status {result.returncode}")
        logger.debug("mutagen %s succeeded", args[1] if len(args) > 1 else args[0])

    def _run(self, args: list[str], env_vars: dict[str, str] | None) -> CommandResult:
        """Run mutagen.

        Raises:
            MutagenError: If mutagen is not installed or times out.
        """
        if not self.is_available():
            msg = f"mutagen not found: {self.binary}. Install it or set mutagen_path in config.toml"
            raise MutagenError(msg)

        env = build_env(env_vars)
        mutagen_env = sorted(key for key in env if key.startswith("MUTAGEN"))
        logger.debug("mutagen env: %s", ", ".join(mutagen_env) or "-")
        try:
            return run_command([self.binary, *args], timeout=self._TIMEOUT, env=env)
        except subprocess.TimeoutExpired as e:
            raise MutagenError(f"mutagen timed out after {self._TIMEOUT:.0f}s") from e
