"""Data models for nixbox.

This module exports the core data structures used throughout the application.
"""

from nixbox.models.lockfile import LockedSystem, LockEntry, LockfileData
from nixbox.models.package import (
    PackageReference,
    effective_packages,
    find_by_canonical_name,
    parse_references,
    require_by_canonical_name,
)
from nixbox.models.profile import ProfileItem, ProfileSnapshot

__all__ = [
    "LockEntry",
    "LockedSystem",
    "LockfileData",
    "PackageReference",
    "ProfileItem",
    "ProfileSnapshot",
    "effective_packages",
    "find_by_canonical_name",
    "parse_references",
    "require_by_canonical_name",
]
