"""Lockfile I/O and maintenance.

This module provides the Lockfile class, which pins every declared
package to the identity it resolved to. The lockfile is loaded once per
invocation, mutated in memory, and only written back after a
reconciliation succeeds.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from nixbox.core.errors import LockfileError, PackageNotFoundError
from nixbox.core.paths import get_lockfile_path
from nixbox.models.lockfile import LockEntry, LockfileData
from nixbox.models.package import PackageReference

if TYPE_CHECKING:
    from nixbox.core.resolve import Resolver

logger = logging.getLogger(__name__)


def _hash_keys(keys: Iterable[str]) -> str:
    digest = hashlib.sha256()
    for key in sorted(set(keys)):
        digest.update(key.encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()


class Lockfile:
    """In-memory view of devbox.lock.

    Attributes:
        path: Location of the lockfile on disk.
    """

    def __init__(
        self,
        path: Path,
        data: LockfileData | None = None,
        resolver: Resolver | None = None,
    ) -> None:
        """Initialize a Lockfile.

        Args:
            path: Location of the lockfile on disk.
            data: Parsed contents. Defaults to an empty lockfile.
            resolver: Authority used to resolve new references.
        """
        self.path = path
        self._data = data if data is not None else LockfileData()
        self._resolver = resolver

    @classmethod
    def load(cls, project_dir: Path, resolver: Resolver | None = None) -> Lockfile:
        """Load the lockfile of a project.

        A missing lockfile yields an empty one.

        Raises:
            LockfileError: If the file cannot be read or is invalid.
        """
        path = get_lockfile_path(project_dir)
        if not path.exists():
            logger.debug("No lockfile at %s, starting empty", path)
            return cls(path, resolver=resolver)

        try:
            raw = path.read_text(encoding="utf-8")
            data = LockfileData.model_validate_json(raw)
        except OSError as e:
            raise LockfileError(f"Failed to read lockfile {path}: {e}") from e
        except PydanticValidationError as e:
            raise LockfileError(f"Invalid lockfile {path}: {e}") from e
        return cls(path, data=data, resolver=resolver)

    @property
    def entries(self) -> Mapping[str, LockEntry]:
        """Lock entries keyed by declared package string."""
        return self._data.packages

    def get(self, key: str) -> LockEntry | None:
        """Get the entry stored under an exact key."""
        return self._data.packages.get(key)

    def entry_for(self, reference: PackageReference) -> LockEntry | None:
        """Get the entry for a reference, by raw string then versioned form."""
        for key in reference.lock_keys:
            entry = self._data.packages.get(key)
            if entry is not None:
                return entry
        return None

    def is_up_to_date(self, declared: Iterable[str]) -> bool:
        """Check that the locked keys are exactly the declared packages.

        Pure and cheap: compares a hash of the declared package strings
        with a hash of the keys currently locked.
        """
        return _hash_keys(declared) == _hash_keys(self._data.packages)

    def resolve(self, raw: str) -> LockEntry:
        """Resolve a package string through the resolving authority.

        Raises:
            PackageNotFoundError: If the authority has no such package.
            ResolutionError: If the authority fails.
            LockfileError: If no resolver was configured.
        """
        if self._resolver is None:
            raise LockfileError("No resolver configured for lockfile")
        entry = self._resolver.resolve(PackageReference.parse(raw))
        if entry is None:
            raise PackageNotFoundError(raw)
        return entry

    def add(self, *raws: str) -> None:
        """Lock new package strings. Already locked ones are left alone.

        Nothing is written to disk.

        Raises:
            PackageNotFoundError: If a package does not exist.
            ResolutionError: If the authority fails.
        """
        for raw in raws:
            if self.entry_for(PackageReference.parse(raw)) is not None:
                continue
            logger.debug("Resolving %s", raw)
            self._data.packages[raw] = self.resolve(raw)

    def put(self, raw: str, entry: LockEntry) -> None:
        """Store an already resolved entry."""
        self._data.packages[raw] = entry

    def remove(self, *raws: str) -> None:
        """Remove entries. Absent keys are ignored."""
        for raw in raws:
            self._data.packages.pop(raw, None)

    def tidy(self, declared: Iterable[str]) -> list[str]:
        """Drop entries for packages that are no longer declared.

        Returns:
            Keys that were removed.
        """
        keep = set(declared)
        stale = [key for key in self._data.packages if key not in keep]
        for key in stale:
            del self._data.packages[key]
        if stale:
            logger.debug("Tidied lockfile entries: %s", ", ".join(stale))
        return stale

    def ensure_locked(self, declared: Iterable[str]) -> None:
        """Resolve every declared package that has no entry yet.

        Entries found only under the versioned form are re-keyed to the
        declared string so that :meth:`tidy` keeps them.
        """
        for raw in declared:
            if raw in self._data.packages:
                continue
            existing = self.entry_for(PackageReference.parse(raw))
            if existing is not None:
                self._data.packages[raw] = existing
                continue
            self.add(raw)

    def to_json(self) -> str:
        """Serialize deterministically: sorted keys, two-space indent."""
        data = self._data.model_dump(mode="json", exclude_none=True)
        return json.dumps(data, indent=2, sort_keys=True) + "\n"

    def content_hash(self) -> str:
        """SHA-256 of the serialized lockfile."""
        return hashlib.sha256(self.to_json().encode("utf-8")).hexdigest()

    def save(self) -> Path:
        """Write the lockfile atomically.

        Writes to a temporary file in the same directory and renames it
        over the lockfile. The temporary file is removed on failure.

        Raises:
            LockfileError: If the file cannot be written.
        """
        content = self.to_json().encode("utf-8")
        tmp_path: Path | None = None
        try:
            with NamedTemporaryFile(
                mode="wb",
                dir=self.path.parent,
                prefix=".devbox.lock.",
                delete=False,
                suffix=".tmp",
            ) as f:
                tmp_path = Path(f.name)
                f.write(content)
            os.replace(str(tmp_path), str(self.path))
        except OSError as e:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()
            raise LockfileError(f"Failed to write lockfile: {e}") from e

        logger.debug("Saved lockfile %s", self.path)
        return self.path
