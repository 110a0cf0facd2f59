"""Project manifest (devbox.json) I/O.

This module provides the Pydantic model for devbox.json and functions
for finding, loading and saving it. Keys nixbox does not know about are
preserved on save.
"""

import hashlib
import json
import os
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from nixbox.core.errors import NixboxError
from nixbox.core.paths import CONFIG_FILENAME, get_project_config_path


class ConfigError(NixboxError):
    """Base exception for project manifest errors."""


class ConfigNotFoundError(ConfigError):
    """Raised when no devbox.json can be found."""


class ConfigParseError(ConfigError):
    """Raised when devbox.json is not valid JSON."""


class ConfigValidationError(ConfigError):
    """Raised when devbox.json does not match the schema."""


class ShellConfig(BaseModel):
    """The ``shell`` section of devbox.json.

    Attributes:
        init_hook: Commands run when the shell starts.
        scripts: Named scripts, each a list of commands.
    """

    model_config = ConfigDict(extra="allow")

    init_hook: Annotated[list[str], Field(default_factory=list)]
    scripts: Annotated[dict[str, list[str]], Field(default_factory=dict)]

    @field_validator("init_hook", mode="before")
    @classmethod
    def coerce_init_hook(cls, v: object) -> object:
        """Accept a single command string."""
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("scripts", mode="before")
    @classmethod
    def coerce_scripts(cls, v: object) -> object:
        """Accept single command strings as script bodies."""
        if isinstance(v, dict):
            return {name: [body] if isinstance(body, str) else body for name, body in v.items()}
        return v


class NixpkgsConfig(BaseModel):
    """The ``nixpkgs`` section of devbox.json."""

    model_config = ConfigDict(extra="allow")

    commit: Annotated[str | None, Field(description="Pinned nixpkgs commit")] = None


class ProjectConfig(BaseModel):
    """Complete devbox.json.

    Attributes:
        packages: Declared packages in priority order.
        env: Environment variables for the project shell.
        shell: Shell hooks and scripts.
        nixpkgs: Pinned nixpkgs revision for plain package names.
    """

    model_config = ConfigDict(extra="allow")

    packages: Annotated[list[str], Field(default_factory=list)]
    env: Annotated[dict[str, str], Field(default_factory=dict)]
    shell: ShellConfig | None = None
    nixpkgs: NixpkgsConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for writing, omitting unset optional sections."""
        return self.model_dump(mode="json", exclude_none=True)


def find_project_dir(start: Path | None = None) -> Path:
    """Find the nearest directory containing devbox.json.

    Args:
        start: Directory (or file within it) to start from. Defaults to cwd.

    Raises:
        ConfigNotFoundError: If no devbox.json exists up to the filesystem root.
    """
    current = (start or Path.cwd()).resolve()
    if current.is_file():
        current = current.parent
    for directory in (current, *current.parents):
        if (directory / CONFIG_FILENAME).is_file():
            return directory
    raise ConfigNotFoundError(f"No {CONFIG_FILENAME} found in {current} or any parent directory")


def load_config(project_dir: Path) -> ProjectConfig:
    """Load and validate devbox.json.

    Raises:
        ConfigNotFoundError: If the file doesn't exist.
        ConfigParseError: If the JSON syntax is invalid.
        ConfigValidationError: If the content doesn't match the schema.
    """
    path = get_project_config_path(project_dir)
    if not path.exists():
        raise ConfigNotFoundError(f"Config not found: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigParseError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read {path}: {e}") from e

    try:
        return ProjectConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigValidationError(f"Invalid {CONFIG_FILENAME}: {e}") from e


def save_config(config: ProjectConfig, project_dir: Path) -> Path:
    """Write devbox.json atomically.

    Raises:
        ConfigError: If the file cannot be written.
    """
    path = get_project_config_path(project_dir)
    content = json.dumps(config.to_dict(), indent=2) + "\n"

    tmp_path: Path | None = None
    try:
        with NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=path.parent,
            delete=False,
            suffix=".tmp",
        ) as f:
            tmp_path = Path(f.name)
            f.write(content)
        os.replace(str(tmp_path), str(path))
    except OSError as e:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()
        raise ConfigError(f"Failed to write {path}: {e}") from e
    return path


def init_config(project_dir: Path) -> tuple[Path, bool]:
    """Create an empty devbox.json if none exists.

    Returns:
        Tuple of (path, created).
    """
    path = get_project_config_path(project_dir)
    if path.exists():
        return path, False
    project_dir.mkdir(parents=True, exist_ok=True)
    config = ProjectConfig(shell=ShellConfig(init_hook=[], scripts={}))
    return save_config(config, project_dir), True


def manifest_hash(config: ProjectConfig) -> str:
    """SHA-256 of the canonical JSON form of a config."""
    canonical = json.dumps(config.to_dict(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
