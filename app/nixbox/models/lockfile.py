"""Lockfile models.

This module defines the Pydantic models representing devbox.lock, the
persisted mapping from a declared package string to the identity it
resolved to.
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

LOCKFILE_VERSION = "1"

# Where a lock entry was resolved from
LockSourceType = Literal["search", "nix"]


def split_installable(installable: str) -> tuple[str, str]:
    """Split an installable into its flake reference and attribute path.

    Args:
        installable: e.g. ``github:NixOS/nixpkgs/abc#hello``.

    Returns:
        Tuple of (flake_ref, attr_path). attr_path is empty if absent.
    """
    flake, _, attr = installable.partition("#")
    return flake, attr


class LockedSystem(BaseModel):
    """Platform-specific resolution of a package.

    Attributes:
        store_path: Output store path for this platform.
        hash: Content hash of the output, if known.
    """

    model_config = ConfigDict(extra="forbid")

    store_path: Annotated[str, Field(description="Output store path")]
    hash: Annotated[str | None, Field(description="Content hash of the output")] = None


class LockEntry(BaseModel):
    """Resolved identity of one declared package.

    Attributes:
        resolved: Locked installable (flake reference pinned to a revision).
        version: Resolved package version.
        source: Authority the entry was resolved from.
        hash: Content hash of the locked flake source.
        last_modified: When the locked source was last modified.
        systems: Store paths per platform.
    """

    model_config = ConfigDict(extra="forbid")

    resolved: Annotated[str, Field(description="Locked installable")]
    version: Annotated[str, Field(description="Resolved version")] = ""
    source: Annotated[LockSourceType, Field(description="Resolving authority")] = "nix"
    hash: Annotated[str | None, Field(description="Content hash of the locked source")] = None
    last_modified: Annotated[
        datetime | None, Field(description="Last modification of the locked source")
    ] = None
    systems: Annotated[
        dict[str, LockedSystem],
        Field(default_factory=dict, description="Store paths per platform"),
    ]

    @property
    def flake_ref(self) -> str:
        """Locked flake reference without the attribute path."""
        return split_installable(self.resolved)[0]

    @property
    def attr_path(self) -> str:
        """Attribute path of the locked installable."""
        return split_installable(self.resolved)[1]

    def store_path_for(self, system: str) -> str | None:
        """Get the output store path for a platform, if locked."""
        locked = self.systems.get(system)
        return locked.store_path if locked is not None else None


class LockfileData(BaseModel):
    """Complete contents of devbox.lock.

    Attributes:
        lockfile_version: Schema version.
        packages: Lock entries keyed by the declared package string.
    """

    model_config = ConfigDict(extra="forbid")

    lockfile_version: Annotated[str, Field(description="Lockfile schema version")] = (
        LOCKFILE_VERSION
    )
    packages: Annotated[
        dict[str, LockEntry],
        Field(default_factory=dict, description="Lock entries by package string"),
    ]
