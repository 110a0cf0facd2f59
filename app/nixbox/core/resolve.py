"""Package resolution.

Resolves a PackageReference to a LockEntry using either the package
search service (versioned names) or the Nix store itself (flake
installables, and plain names when search is disabled).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from nixbox.core.errors import ResolutionError
from nixbox.models.package import DEFAULT_NIXPKGS, LATEST, PackageReference

if TYPE_CHECKING:
    from nixbox.models.lockfile import LockEntry
    from nixbox.search.client import SearchClient
    from nixbox.store.base import ProfileStore

logger = logging.getLogger(__name__)


class Resolver:
    """Resolving authority for package references."""

    def __init__(
        self,
        store: ProfileStore,
        search: SearchClient | None = None,
        nixpkgs: str = DEFAULT_NIXPKGS,
    ) -> None:
        """Initialize the resolver.

        Args:
            store: Store used to resolve flake installables.
            search: Search client for versioned names. If None, only
                flake installables and latest versions can be resolved.
            nixpkgs: Flake reference plain names resolve against when
                the search service is not used.
        """
        self._store = store
        self._search = search
        self._nixpkgs = nixpkgs

    def resolve(self, reference: PackageReference) -> LockEntry | None:
        """Resolve a reference.

        Returns:
            LockEntry, or None if the package does not exist.

        Raises:
            ResolutionError: If the reference cannot be resolved without
                the search service, or the authority fails.
        """
        if reference.is_flake:
            return self._store.resolve(reference.raw)

        if self._search is not None:
            result = self._search.resolve(reference.canonical_name, reference.version or LATEST)
            return result.to_lock_entry() if result is not None else None

        if not reference.is_latest:
            msg = (
                f"Cannot resolve {reference.raw}: versioned packages need the search "
                "service, which is disabled"
            )
            raise ResolutionError(msg)

        logger.debug("Resolving %s against %s", reference.raw, self._nixpkgs)
        return self._store.resolve(reference.installable(self._nixpkgs))
