"""Where nixbox keeps its files.

User settings and the theme override live in the XDG config directory
(``$XDG_CONFIG_HOME/nixbox``, default ``~/.config/nixbox``). Everything
else belongs to a project: devbox.json and devbox.lock at its root, and
nixbox's own state under ``.devbox/``::

    .devbox/
        .reconcile.lock         held for the length of one operation
        local.lock              advisory up-to-date cache
        nix/profile/default     Nix profile symlink
        virtenv/                plugin files
        virtenv/.wrappers/bin   executable wrappers
"""

import os
from pathlib import Path

APP_NAME = "nixbox"

CONFIG_FILENAME = "devbox.json"
LOCKFILE_FILENAME = "devbox.lock"
PROJECT_STATE_DIRNAME = ".devbox"

# Below PROJECT_STATE_DIRNAME
PROFILE_PATH = Path("nix", "profile", "default")
LOCAL_LOCK_FILENAME = "local.lock"
RECONCILE_LOCK_FILENAME = ".reconcile.lock"
VIRTENV_DIRNAME = "virtenv"
WRAPPERS_BIN_PATH = Path(VIRTENV_DIRNAME, ".wrappers", "bin")


def get_config_dir() -> Path:
    """User configuration directory, honoring XDG_CONFIG_HOME."""
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / APP_NAME


def get_settings_path() -> Path:
    return get_config_dir() / "config.toml"


def get_user_theme_path() -> Path:
    return get_config_dir() / "theme.toml"


def get_project_config_path(project_dir: Path) -> Path:
    return project_dir / CONFIG_FILENAME


def get_lockfile_path(project_dir: Path) -> Path:
    return project_dir / LOCKFILE_FILENAME


def _state(project_dir: Path) -> Path:
    return project_dir / PROJECT_STATE_DIRNAME


def get_profile_dir(project_dir: Path) -> Path:
    """The project's Nix profile.

    Nix owns the symlink; nixbox only creates its parent.
    """
    return _state(project_dir) / PROFILE_PATH


def get_local_lock_path(project_dir: Path) -> Path:
    return _state(project_dir) / LOCAL_LOCK_FILENAME


def get_reconcile_lock_path(project_dir: Path) -> Path:
    return _state(project_dir) / RECONCILE_LOCK_FILENAME


def get_virtenv_dir(project_dir: Path) -> Path:
    return _state(project_dir) / VIRTENV_DIRNAME


def get_wrappers_bin_dir(project_dir: Path) -> Path:
    return _state(project_dir) / WRAPPERS_BIN_PATH


def ensure_dir(path: Path, name: str) -> Path:
    """Create ``path`` and its parents if needed.

    Args:
        path: Directory to create.
        name: What the directory is for, used in the error message.

    Raises:
        RuntimeError: If the directory cannot be created.
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except PermissionError as e:
        raise RuntimeError(f"Cannot create {name} directory {path}: Permission denied") from e
    except OSError as e:
        raise RuntimeError(f"Cannot create {name} directory {path}: {e}") from e
    return path
