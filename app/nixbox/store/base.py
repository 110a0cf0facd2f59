"""Abstract base class for package stores.

This module defines the ProfileStore interface: the only operations the
reconciliation engine needs from the external package manager.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from nixbox.models.lockfile import LockEntry
from nixbox.models.profile import ProfileItem, ProfileSnapshot


class ProfileStore(ABC):
    """Abstract base class for profile-based package stores.

    Every method is a blocking call to an external process. Stores do not
    retry; a failed call raises immediately.

    Example:
        >>> store = NixStore()
        >>> if store.is_available():
        ...     for item in store.list(profile_dir):
        ...         print(item.index, item.package_name)
    """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the package manager is available on the system.

        Returns:
            True if the package manager can be used, False otherwise.
        """

    @abstractmethod
    def list(self, profile_dir: Path) -> ProfileSnapshot:
        """List the items installed in a profile.

        Args:
            profile_dir: Path of the profile.

        Returns:
            Snapshot of the profile. Empty if the profile does not exist.

        Raises:
            ExternalProcessError: If the listing fails.
        """

    @abstractmethod
    def install(self, profile_dir: Path, installable: str, priority: int | None = None) -> None:
        """Install one installable into a profile.

        Installing an identical, already installed package is a no-op at
        the store level.

        Args:
            profile_dir: Path of the profile.
            installable: Installable to add.
            priority: Conflict priority; lower values win.

        Raises:
            ExternalProcessError: If the installation fails.
        """

    @abstractmethod
    def remove_by_index(self, profile_dir: Path, item: ProfileItem) -> None:
        """Remove one item from a profile.

        The item must come from the latest snapshot of the profile, and
        callers removing several items from one snapshot must do so in
        descending index order.

        Raises:
            ExternalProcessError: If the removal fails.
        """

    @abstractmethod
    def resolve(self, installable: str) -> LockEntry | None:
        """Resolve an installable to a locked identity.

        Returns:
            LockEntry for the installable, or None if it does not exist.

        Raises:
            ExternalProcessError: If resolution fails for another reason.
        """

    @abstractmethod
    def prefetch(self, flake_ref: str) -> None:
        """Fetch a flake source ahead of installing from it.

        Raises:
            ExternalProcessError: If the fetch fails.
        """
