"""Profile listing models.

A ProfileItem is one element reported by ``nix profile list``. Its
index is only meaningful within the listing it came from: any removal
shifts the indices of later elements, so items are grouped into a
ProfileSnapshot that is discarded after the profile is mutated.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from nixbox.models.lockfile import split_installable

if TYPE_CHECKING:
    from nixbox.core.lockfile import Lockfile
    from nixbox.models.package import PackageReference

# legacyPackages.x86_64-linux.hello -> hello
_SYSTEM_ATTR_PREFIX = re.compile(r"^(legacyPackages|packages)\.[^.]+\.")


def normalize_attr_path(attr_path: str) -> str:
    """Strip the per-system output prefix from a flake attribute path."""
    return _SYSTEM_ATTR_PREFIX.sub("", attr_path)


def normalize_flake_ref(flake_ref: str) -> str:
    """Normalize indirect registry references (``flake:nixpkgs`` -> ``nixpkgs``)."""
    if flake_ref.startswith("flake:"):
        return flake_ref[len("flake:") :]
    return flake_ref


def normalize_installable(installable: str) -> str:
    """Normalize an installable for comparison."""
    flake, attr = split_installable(installable)
    return f"{normalize_flake_ref(flake)}#{normalize_attr_path(attr)}"


@dataclass(frozen=True, slots=True)
class ProfileItem:
    """An element installed in a Nix profile.

    Attributes:
        index: Position in the listing snapshot this item came from.
        attr_path: Flake attribute path (e.g. legacyPackages.x86_64-linux.hello).
        original_url: Flake reference as given at install time.
        url: Locked flake reference.
        store_paths: Output store paths of the element.
        name: Element name, reported by newer Nix versions.
        active: Whether the element is active.
        priority: Element priority, if reported.
    """

    index: int
    attr_path: str
    original_url: str = ""
    url: str = ""
    store_paths: tuple[str, ...] = field(default=())
    name: str | None = None
    active: bool = True
    priority: int | None = None

    @property
    def package_name(self) -> str:
        """Attribute path without the per-system prefix."""
        return normalize_attr_path(self.attr_path)

    @property
    def installable(self) -> str:
        """Normalized locked installable."""
        return f"{normalize_flake_ref(self.url)}#{self.package_name}"

    @property
    def unlocked_installable(self) -> str:
        """Normalized installable as originally requested."""
        return f"{normalize_flake_ref(self.original_url)}#{self.package_name}"

    @property
    def removal_key(self) -> str:
        """Argument identifying this element to ``nix profile remove``."""
        if self.name:
            return self.name
        return str(self.index)

    def matches(
        self,
        reference: PackageReference,
        lockfile: Lockfile | None,
        system: str,
    ) -> bool:
        """Check whether this item is the installed form of a reference.

        Matching goes by locked store path first, then by locked
        installable. Unlocked references fall back to the installable
        they were requested as, or to the bare package name for
        references that track the latest version.
        """
        entry = lockfile.entry_for(reference) if lockfile is not None else None
        if entry is not None:
            locked_path = entry.store_path_for(system)
            if locked_path is not None and locked_path in self.store_paths:
                return True
            return normalize_installable(entry.resolved) == self.installable

        if reference.is_flake:
            wanted = normalize_installable(reference.raw)
            return wanted in (self.installable, self.unlocked_installable)
        if reference.is_latest:
            return self.package_name == reference.canonical_name
        return False


@dataclass(frozen=True, slots=True)
class ProfileSnapshot:
    """Items from a single profile listing.

    Attributes:
        items: Items in listing order.
    """

    items: tuple[ProfileItem, ...] = ()

    def __iter__(self) -> Iterator[ProfileItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def find(
        self,
        reference: PackageReference,
        lockfile: Lockfile | None,
        system: str,
    ) -> ProfileItem | None:
        """Return the first item matching a reference, if any."""
        for item in self.items:
            if item.matches(reference, lockfile, system):
                return item
        return None

    def store_paths(self) -> set[str]:
        """All store paths reported by the listing."""
        paths: set[str] = set()
        for item in self.items:
            paths.update(item.store_paths)
        return paths
