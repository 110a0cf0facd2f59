"""Package reference model.

This module defines PackageReference, the structured identity parsed
from a package string in devbox.json, along with helpers for looking
references up by canonical name.

A reference takes one of three forms:
- ``hello``: legacy, unversioned. Versioned form is ``hello@latest``.
- ``hello@2.12``: versioned name.
- ``github:org/repo#pkg``: flake installable, never versioned.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from nixbox.core.errors import AmbiguousMatchError, PackageNotInManifestError

if TYPE_CHECKING:
    from nixbox.core.lockfile import Lockfile

LATEST = "latest"
DEFAULT_NIXPKGS = "nixpkgs"

# Flake references always contain one of these; plain package names never do
_FLAKE_MARKERS = (":", "#")


def is_flake_installable(raw: str) -> bool:
    """Check whether a package string is a flake installable."""
    return any(marker in raw for marker in _FLAKE_MARKERS)


@dataclass(frozen=True, slots=True)
class PackageReference:
    """A user-supplied package string parsed into its identity parts.

    Equality of the dataclass itself compares the parsed fields; use
    :meth:`equals` to compare resolved identities through the lockfile.

    Attributes:
        raw: The exact string from devbox.json or the command line.
        canonical_name: Name with any version suffix stripped.
        version: Requested version, or None for legacy references.
        is_flake: Whether the reference is a flake installable.
    """

    raw: str
    canonical_name: str
    version: str | None = None
    is_flake: bool = False

    @classmethod
    def parse(cls, raw: str) -> PackageReference:
        """Parse a package string. Never fails.

        Anything that cannot be split into ``name@version`` is treated
        as a canonical name with an implicit ``@latest``.
        """
        value = raw.strip()
        if is_flake_installable(value):
            return cls(raw=raw, canonical_name=value, is_flake=True)

        name, sep, version = value.rpartition("@")
        if not sep or not name:
            return cls(raw=raw, canonical_name=value)
        return cls(raw=raw, canonical_name=name, version=version or LATEST)

    @property
    def versioned(self) -> str:
        """Canonical form with an explicit version (``@latest`` by default)."""
        if self.is_flake:
            return self.raw
        return f"{self.canonical_name}@{self.version or LATEST}"

    @property
    def is_legacy(self) -> bool:
        """Check if this is an unversioned plain package name."""
        return not self.is_flake and self.version is None

    @property
    def is_latest(self) -> bool:
        """Check if this reference tracks the latest available version."""
        return not self.is_flake and self.version in (None, LATEST)

    @property
    def lock_keys(self) -> tuple[str, ...]:
        """Keys under which this reference may appear in the lockfile."""
        if self.raw == self.versioned:
            return (self.raw,)
        return (self.raw, self.versioned)

    def installable(self, nixpkgs: str = DEFAULT_NIXPKGS) -> str:
        """Unlocked installable for this reference.

        Args:
            nixpkgs: Flake reference that plain package names resolve against.
        """
        if self.is_flake:
            return self.raw
        return f"{nixpkgs}#{self.canonical_name}"

    def identity(self, lockfile: Lockfile | None = None) -> str:
        """Resolved identity used for equality.

        The locked installable when the lockfile has an entry, otherwise
        the best unlocked approximation.
        """
        if lockfile is not None:
            entry = lockfile.entry_for(self)
            if entry is not None:
                return entry.resolved
        if self.is_latest:
            return self.installable()
        return self.versioned

    def equals(self, other: PackageReference, lockfile: Lockfile | None = None) -> bool:
        """Compare two references by resolved identity, not by raw string."""
        if self.raw == other.raw:
            return True
        return self.identity(lockfile) == other.identity(lockfile)

    def __str__(self) -> str:
        return self.raw


def parse_references(raws: Iterable[str]) -> list[PackageReference]:
    """Parse a sequence of package strings, preserving order."""
    return [PackageReference.parse(raw) for raw in raws]


def _matching(declared: Iterable[PackageReference], name: str) -> list[PackageReference]:
    wanted = PackageReference.parse(name).canonical_name
    matches: list[PackageReference] = []
    for ref in declared:
        if ref.raw == name or ref.canonical_name == wanted:
            if all(ref.raw != seen.raw for seen in matches):
                matches.append(ref)
    return matches


def find_by_canonical_name(
    declared: Iterable[PackageReference], name: str
) -> PackageReference | None:
    """Find the declared reference matching a name.

    A name matches a declared reference if it equals its raw string or
    shares its canonical name. More than one match is treated the same
    as no match.

    Returns:
        The single matching reference, or None.
    """
    matches = _matching(declared, name)
    if len(matches) != 1:
        return None
    return matches[0]


def require_by_canonical_name(
    declared: Iterable[PackageReference], name: str
) -> PackageReference:
    """Find the declared reference matching a name or raise.

    Raises:
        AmbiguousMatchError: If more than one declared reference matches.
        PackageNotInManifestError: If nothing matches.
    """
    matches = _matching(declared, name)
    if len(matches) > 1:
        raise AmbiguousMatchError(name, [m.raw for m in matches])
    if not matches:
        raise PackageNotInManifestError(name)
    return matches[0]


def effective_packages(declared: Iterable[PackageReference]) -> list[PackageReference]:
    """Collapse references that share a canonical name.

    A later declaration replaces an earlier one with the same canonical
    name but keeps the earlier one's position, so ``[a@1, b@2, a@2]``
    becomes ``[a@2, b@2]``.
    """
    slots: dict[str, PackageReference] = {}
    for ref in declared:
        slots[ref.canonical_name] = ref
    return list(slots.values())
