"""Nix profile store implementation.

Drives ``nix profile`` and friends through the nix CLI. All commands run
with the ``nix-command`` and ``flakes`` experimental features enabled.
"""

from __future__ import annotations

import json
import logging
import platform
import subprocess
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from nixbox.core.errors import ExternalProcessError, NixboxError
from nixbox.models.lockfile import LockedSystem, LockEntry, split_installable
from nixbox.models.profile import ProfileItem, ProfileSnapshot
from nixbox.store.base import ProfileStore
from nixbox.utils.shell import CommandResult, command_exists, run_command

logger = logging.getLogger(__name__)

EXPERIMENTAL_FLAGS = ["--extra-experimental-features", "nix-command flakes"]

# nix eval applies this to the derivation to get what the lockfile needs
_EVAL_APPLY = 'p: { name = p.name or ""; version = p.version or ""; outPath = p.outPath; }'

# Substrings nix prints when an attribute or flake does not exist
_NOT_FOUND_MARKERS = (
    "does not provide attribute",
    "cannot find flake",
    "error: getting status of",
)

_JSON_UNSUPPORTED_MARKER = "unrecognised flag '--json'"

_MACHINE_ALIASES = {
    "amd64": "x86_64",
    "x86_64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
}


class StoreUnavailableError(NixboxError):
    """Raised when the nix CLI is not installed."""


def detect_system() -> str:
    """Return the Nix system double for the running machine.

    Returns:
        e.g. ``x86_64-linux`` or ``aarch64-darwin``.
    """
    machine = platform.machine().lower()
    arch = _MACHINE_ALIASES.get(machine, machine)
    return f"{arch}-{platform.system().lower()}"


class NixStore(ProfileStore):
    """Profile store backed by the nix CLI.

    Attributes:
        system: Nix system double used to pick store paths.
    """

    # Timeout for metadata commands (list, eval)
    _QUERY_TIMEOUT: float = 120.0

    def __init__(self, system: str | None = None, install_timeout: float = 1800.0) -> None:
        """Initialize the store.

        Args:
            system: Nix system double. Detected from the machine if None.
            install_timeout: Maximum time in seconds for one install.
        """
        self.system = system or detect_system()
        self._install_timeout = install_timeout

    def is_available(self) -> bool:
        """Check if the nix CLI is available."""
        return command_exists("nix")

    def list(self, profile_dir: Path) -> ProfileSnapshot:
        """List profile items with ``nix profile list --json``.

        Falls back to the plain text listing for Nix versions without
        JSON support.
        """
        if not profile_dir.exists() and not profile_dir.is_symlink():
            return ProfileSnapshot()

        args = ["profile", "list", "--json", "--profile", str(profile_dir)]
        result = self._run(args, timeout=self._QUERY_TIMEOUT, check=False)
        if result.success:
            return parse_profile_json(result.stdout)

        if _JSON_UNSUPPORTED_MARKER in result.output:
            logger.debug("nix profile list has no --json, using text listing")
            text = self._run(
                ["profile", "list", "--profile", str(profile_dir)],
                timeout=self._QUERY_TIMEOUT,
            )
            return parse_profile_text(text.stdout)

        raise ExternalProcessError(self._command(args), result.returncode, result.output)

    def install(self, profile_dir: Path, installable: str, priority: int | None = None) -> None:
        """Install an installable with ``nix profile install``."""
        args = ["profile", "install", "--profile", str(profile_dir)]
        if priority is not None:
            args.extend(["--priority", str(priority)])
        args.append(installable)

        logger.info("Installing %s into %s", installable, profile_dir)
        self._run(args, timeout=self._install_timeout)

    def remove_by_index(self, profile_dir: Path, item: ProfileItem) -> None:
        """Remove an item with ``nix profile remove``."""
        logger.info("Removing %s (%s) from %s", item.package_name, item.removal_key, profile_dir)
        self._run(
            ["profile", "remove", "--profile", str(profile_dir), item.removal_key],
            timeout=self._install_timeout,
        )

    def resolve(self, installable: str) -> LockEntry | None:
        """Resolve an installable with ``nix flake metadata`` and ``nix eval``."""
        flake_ref, attr_path = split_installable(installable)
        if not attr_path:
            msg = f"Installable {installable} has no attribute path"
            raise NixboxError(msg)

        metadata = self._run_json(["flake", "metadata", "--json", flake_ref])
        if metadata is None:
            return None

        locked_url = metadata.get("url") or flake_ref
        resolved = f"{locked_url}#{attr_path}"
        value = self._run_json(["eval", "--json", resolved, "--apply", _EVAL_APPLY])
        if value is None:
            return None

        last_modified: datetime | None = None
        if isinstance(metadata.get("lastModified"), int):
            last_modified = datetime.fromtimestamp(metadata["lastModified"], UTC)

        return LockEntry(
            resolved=resolved,
            version=value.get("version") or "",
            source="nix",
            hash=(metadata.get("locked") or {}).get("narHash"),
            last_modified=last_modified,
            systems={self.system: LockedSystem(store_path=value["outPath"])},
        )

    def prefetch(self, flake_ref: str) -> None:
        """Fetch a flake into the local store with ``nix flake prefetch``."""
        logger.info("Prefetching %s", flake_ref)
        self._run(["flake", "prefetch", flake_ref], timeout=self._install_timeout)

    def _command(self, args: list[str]) -> list[str]:
        return ["nix", *args, *EXPERIMENTAL_FLAGS]

    def _run(
        self,
        args: list[str],
        *,
        timeout: float,
        check: bool = True,
    ) -> CommandResult:
        """Run a nix subcommand.

        Raises:
            StoreUnavailableError: If nix is not installed.
            ExternalProcessError: If check is True and the command fails.
        """
        if not self.is_available():
            msg = "Nix is not available on this system"
            raise StoreUnavailableError(msg)

        cmd = self._command(args)
        try:
            result = run_command(cmd, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise ExternalProcessError(cmd, -1, f"nix timed out after {timeout:.0f}s") from e

        if check and not result.success:
            raise ExternalProcessError(cmd, result.returncode, result.output)
        return result

    def _run_json(self, args: list[str]) -> dict[str, Any] | None:
        """Run a nix subcommand that prints JSON.

        Returns:
            Parsed object, or None if nix reported that the target does not exist.
        """
        result = self._run(args, timeout=self._QUERY_TIMEOUT, check=False)
        if not result.success:
            if any(marker in result.stderr for marker in _NOT_FOUND_MARKERS):
                return None
            raise ExternalProcessError(self._command(args), result.returncode, result.output)

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ExternalProcessError(
                self._command(args), result.returncode, f"invalid JSON from nix: {e}"
            ) from e
        if not isinstance(data, dict):
            raise ExternalProcessError(
                self._command(args), result.returncode, "unexpected JSON from nix"
            )
        return data


def parse_profile_json(output: str) -> ProfileSnapshot:
    """Parse ``nix profile list --json`` output.

    Version 2 output lists elements in an array; version 3 keys them by
    element name. Either way, the index is the listing position.
    """
    if not output.strip():
        return ProfileSnapshot()

    data = json.loads(output)
    elements = data.get("elements", [])
    if isinstance(elements, dict):
        named: list[tuple[str | None, dict[str, Any]]] = list(elements.items())
    else:
        named = [(None, element) for element in elements]

    items: list[ProfileItem] = []
    for index, (name, element) in enumerate(named):
        items.append(
            ProfileItem(
                index=index,
                name=name,
                attr_path=element.get("attrPath") or "",
                original_url=element.get("originalUrl") or "",
                url=element.get("url") or "",
                store_paths=tuple(element.get("storePaths") or ()),
                active=element.get("active", True),
                priority=element.get("priority"),
            )
        )
    return ProfileSnapshot(items=tuple(items))


def parse_profile_text(output: str) -> ProfileSnapshot:
    """Parse the legacy text output of ``nix profile list``.

    Each line reads ``INDEX UNLOCKED_REF LOCKED_REF STORE_PATH...``.
    Lines that do not match are skipped.
    """
    items: list[ProfileItem] = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 4 or not parts[0].isdigit():
            continue

        original_url, attr_path = split_installable(parts[1])
        url, _ = split_installable(parts[2])
        items.append(
            ProfileItem(
                index=int(parts[0]),
                attr_path=attr_path,
                original_url=original_url,
                url=url,
                store_paths=tuple(parts[3:]),
            )
        )
    return ProfileSnapshot(items=tuple(items))
