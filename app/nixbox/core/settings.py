"""User settings.

This module provides the settings model and I/O functions for the
user-level configuration stored in ~/.config/nixbox/config.toml.

A missing file means defaults. Two environment variables override the
file: NIXBOX_SEARCH_URL and NIXBOX_SYSTEM.
"""

import logging
import os
import tomllib
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Annotated

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nixbox.core.errors import NixboxError
from nixbox.core.paths import get_settings_path
from nixbox.search.client import DEFAULT_SEARCH_URL

logger = logging.getLogger(__name__)

ENV_SEARCH_URL = "NIXBOX_SEARCH_URL"
ENV_SYSTEM = "NIXBOX_SYSTEM"

NIXPKGS_GITHUB = "github:NixOS/nixpkgs"


class Settings(BaseModel):
    """User-level nixbox settings.

    Attributes:
        search_url: Base URL of the package search service.
        search_enabled: Resolve versioned names through the search service.
        nixpkgs_commit: nixpkgs commit plain names resolve against.
            None uses the flake registry's ``nixpkgs``.
        install_timeout: Maximum time for one install, in seconds (60-7200).
        system: Nix system double override. None detects the machine.
        mutagen_path: Path to the mutagen binary. None searches PATH.
    """

    model_config = ConfigDict(extra="forbid")

    search_url: Annotated[
        str,
        Field(description="Package search service base URL"),
    ] = DEFAULT_SEARCH_URL
    search_enabled: Annotated[
        bool,
        Field(description="Resolve versioned packages via the search service"),
    ] = True
    nixpkgs_commit: Annotated[
        str | None,
        Field(description="Pinned nixpkgs commit for plain package names"),
    ] = None
    install_timeout: Annotated[
        int,
        Field(ge=60, le=7200, description="Install timeout in seconds (60-7200)"),
    ] = 1800
    system: Annotated[
        str | None,
        Field(description="Nix system override (e.g. x86_64-linux)"),
    ] = None
    mutagen_path: Annotated[
        str | None,
        Field(description="Path to the mutagen binary"),
    ] = None

    def nixpkgs_ref(self, commit: str | None = None) -> str:
        """Flake reference plain package names resolve against.

        Args:
            commit: Project-level commit, which takes precedence.
        """
        pinned = commit or self.nixpkgs_commit
        if pinned:
            return f"{NIXPKGS_GITHUB}/{pinned}"
        return "nixpkgs"


class SettingsError(NixboxError):
    """Raised when the settings file is invalid or cannot be written."""


def _apply_env_overrides(data: dict[str, object]) -> dict[str, object]:
    search_url = os.environ.get(ENV_SEARCH_URL)
    if search_url:
        data["search_url"] = search_url
    system = os.environ.get(ENV_SYSTEM)
    if system:
        data["system"] = system
    return data


def load_settings(path: Path | None = None) -> Settings:
    """Load user settings.

    Args:
        path: Path to the settings file. If None, uses the XDG config path.

    Returns:
        Validated Settings, with environment overrides applied.

    Raises:
        SettingsError: If the file is not valid TOML or doesn't match the schema.
    """
    settings_path = path or get_settings_path()

    data: dict[str, object] = {}
    try:
        with open(settings_path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        logger.debug("No settings at %s, using defaults", settings_path)
    except tomllib.TOMLDecodeError as e:
        raise SettingsError(f"Invalid TOML syntax in {settings_path}: {e}") from e
    except OSError as e:
        raise SettingsError(f"Failed to read settings: {e}") from e

    try:
        return Settings.model_validate(_apply_env_overrides(data))
    except ValidationError as e:
        raise SettingsError(f"Invalid settings in {settings_path}: {e}") from e


def save_settings(settings: Settings, path: Path | None = None) -> Path:
    """Save user settings to TOML.

    The file is written atomically. Unset optional values are omitted.

    Raises:
        SettingsError: If the file cannot be written.
    """
    settings_path = path or get_settings_path()
    settings_path.parent.mkdir(parents=True, exist_ok=True)

    data = settings.model_dump(exclude_none=True)

    tmp_path: Path | None = None
    try:
        with NamedTemporaryFile(
            mode="wb",
            dir=settings_path.parent,
            delete=False,
            suffix=".tmp",
        ) as f:
            tmp_path = Path(f.name)
            tomli_w.dump(data, f)
        os.replace(str(tmp_path), str(settings_path))
    except OSError as e:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()
        raise SettingsError(f"Failed to write settings: {e}") from e

    return settings_path
