"""Local state cache for skipping no-op reconciliations.

The cache records the inputs of the last successful reconciliation. If
the manifest, the lockfile and the profile generation are all unchanged,
the profile is already convergent and reconciliation can return without
touching the store.

The cache is advisory: it is never a source of truth, and deleting it
only costs a full reconciliation on the next run.
"""

import hashlib
import logging
import os
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nixbox.core.paths import get_local_lock_path

logger = logging.getLogger(__name__)

LOCAL_STATE_VERSION = 1

# Signature of a profile that has never been created
ABSENT_PROFILE = "absent"


class LocalState(BaseModel):
    """Inputs of the last successful reconciliation."""

    model_config = ConfigDict(extra="ignore")

    version: Annotated[int, Field(description="Cache format version")] = LOCAL_STATE_VERSION
    manifest_hash: str
    lockfile_hash: str
    profile_signature: str


def profile_signature(profile_dir: Path) -> str:
    """Cheap signature of a profile's current generation.

    Nix profiles are symlinks to a numbered generation link, which
    changes on every mutation. Hashing the link target detects changes
    made outside nixbox without calling the store.

    Args:
        profile_dir: Path of the profile symlink.

    Returns:
        Hex digest of the link target, or ``absent`` if there is no profile.
    """
    try:
        target = os.readlink(profile_dir)
    except FileNotFoundError:
        return ABSENT_PROFILE
    except OSError:
        # Not a symlink: fall back to the directory's modification time
        try:
            target = f"mtime:{profile_dir.stat().st_mtime_ns}"
        except FileNotFoundError:
            return ABSENT_PROFILE
    return hashlib.sha256(target.encode("utf-8")).hexdigest()


class LocalStateCache:
    """Reads and writes .devbox/local.lock.

    Attributes:
        path: Location of the cache file.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    @classmethod
    def for_project(cls, project_dir: Path) -> "LocalStateCache":
        """Create the cache for a project directory."""
        return cls(get_local_lock_path(project_dir))

    def read(self) -> LocalState | None:
        """Read the cached state.

        Returns:
            The cached state, or None if it is missing or unreadable.
        """
        try:
            return LocalState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as e:
            logger.debug("Ignoring unreadable local state %s: %s", self.path, e)
            return None

    def is_up_to_date(
        self,
        manifest_hash: str,
        lockfile_hash: str,
        profile_signature: str,
    ) -> bool:
        """Check whether the current inputs match the last successful run."""
        state = self.read()
        if state is None or state.version != LOCAL_STATE_VERSION:
            return False
        return (
            state.manifest_hash == manifest_hash
            and state.lockfile_hash == lockfile_hash
            and state.profile_signature == profile_signature
        )

    def update(
        self,
        manifest_hash: str,
        lockfile_hash: str,
        profile_signature: str,
    ) -> None:
        """Record the inputs of a successful reconciliation.

        Raises:
            OSError: If the cache file cannot be written.
        """
        state = LocalState(
            manifest_hash=manifest_hash,
            lockfile_hash=lockfile_hash,
            profile_signature=profile_signature,
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path: Path | None = None
        try:
            with NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=self.path.parent,
                delete=False,
                suffix=".tmp",
            ) as f:
                tmp_path = Path(f.name)
                f.write(state.model_dump_json(indent=2) + "\n")
            os.replace(str(tmp_path), str(self.path))
        except OSError:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()
            raise

    def clear(self) -> None:
        """Delete the cache. Always safe."""
        self.path.unlink(missing_ok=True)
