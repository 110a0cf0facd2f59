"""Package-set reconciliation.

The Reconciler converges a project's Nix profile to the packages declared
in devbox.json. One reconciliation runs these steps in order:

1. Fast path: skip everything if the lockfile keys match the declared
   packages and the local state cache matches the current inputs.
2. Prefetch flake sources for packages with no locked store path.
3. Compute pending installs from a single profile listing.
4. Install pending packages one at a time, in declared order.
5. Compute extras from a fresh listing (ensure and uninstall only).
6. Remove extras in descending index order.
7. Tidy and save the lockfile.
8. Notify plugins, then update the local state cache.

Any failure aborts before step 7, so neither the lockfile nor the cache
is persisted after an error. Packages installed before the failure stay
installed; the next run finds fewer pending packages.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

from nixbox.core.local_state import profile_signature
from nixbox.core.paths import ensure_dir, get_reconcile_lock_path
from nixbox.models.lockfile import split_installable
from nixbox.models.package import DEFAULT_NIXPKGS, PackageReference
from nixbox.models.profile import ProfileItem, ProfileSnapshot
from nixbox.utils.formatting import err_console

try:
    import fcntl
except ImportError:  # Windows
    fcntl = None  # type: ignore[assignment]

if TYPE_CHECKING:
    from nixbox.core.local_state import LocalStateCache
    from nixbox.core.lockfile import Lockfile
    from nixbox.plugins.manager import PluginManager
    from nixbox.store.base import ProfileStore

logger = logging.getLogger(__name__)

# Nix installs with priority 5 by default; lower values win conflicts
PRIORITY_BASE = 5


class InstallMode(str, Enum):
    """What a reconciliation is allowed to do."""

    INSTALL = "install"  # only add missing packages
    UNINSTALL = "uninstall"  # only remove packages no longer declared
    ENSURE = "ensure"  # converge fully


@dataclass
class ProcessState:
    """Flags that hold for the lifetime of one process.

    Attributes:
        profile_reset_checked: Whether the pre-flakes profile check already ran.
    """

    profile_reset_checked: bool = False


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation.

    Attributes:
        mode: Mode the reconciliation ran in.
        skipped: True if the fast path returned without store calls.
        installed: Declared strings installed, in install order.
        removed: Package names of removed profile items.
        undeclared: Names a removal asked for that were not declared.
    """

    mode: InstallMode
    skipped: bool = False
    installed: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    undeclared: list[str] = field(default_factory=list)


class ProjectLock:
    """Exclusive lock on a project for the length of one transaction.

    Uses ``flock`` on ``.devbox/.reconcile.lock``. The lock is released
    when the file is closed, including when the process dies. On
    platforms without ``fcntl`` this is a no-op.

    Example:
        >>> with ProjectLock(project_dir):
        ...     reconciler.reconcile(InstallMode.ENSURE, declared, digest)
    """

    def __init__(self, project_dir: Path) -> None:
        self.path = get_reconcile_lock_path(project_dir)
        self._fd: int | None = None

    def acquire(self) -> None:
        if fcntl is None:
            return
        ensure_dir(self.path.parent, "project state")
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                logger.warning("Waiting for another nixbox process to release %s", self.path)
                fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError:
            os.close(fd)
            raise
        self._fd = fd

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> ProjectLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def reset_profile_dir_for_flakes(profile_dir: Path, state: ProcessState) -> None:
    """Delete a profile created before Nix flakes were enabled.

    Older profiles contain a ``manifest.nix`` and cannot be used by
    ``nix profile``. The check runs at most once per process. Errors are
    logged, not raised; the store reports an unusable profile itself.
    """
    if state.profile_reset_checked:
        return

    try:
        target = profile_dir.resolve(strict=True)
    except FileNotFoundError:
        state.profile_reset_checked = True
        return
    except OSError as e:
        logger.warning("Cannot inspect profile %s: %s", profile_dir, e)
        return

    if not (target / "manifest.nix").exists():
        state.profile_reset_checked = True
        return

    logger.warning("Removing pre-flakes profile %s", profile_dir)
    try:
        if profile_dir.is_symlink() or profile_dir.is_file():
            profile_dir.unlink()
        else:
            shutil.rmtree(profile_dir)
    except OSError as e:
        logger.warning("Cannot remove pre-flakes profile %s: %s", profile_dir, e)
        return
    state.profile_reset_checked = True


class Reconciler:
    """Drives a project's profile to its declared package set."""

    def __init__(
        self,
        profile_dir: Path,
        store: ProfileStore,
        lockfile: Lockfile,
        local_state: LocalStateCache,
        plugins: PluginManager,
        *,
        system: str,
        nixpkgs: str = DEFAULT_NIXPKGS,
        process_state: ProcessState | None = None,
        writer: Console | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            profile_dir: Path of the project's Nix profile.
            store: Package store holding the profile.
            lockfile: Lockfile of the project, owned by the caller.
            local_state: Fast-path cache of the project.
            plugins: Plugin notifier.
            system: Nix system double used to pick locked store paths.
            nixpkgs: Flake reference unlocked plain names install from.
            process_state: Process-scoped flags. A fresh one if None.
            writer: Console for progress messages.
        """
        self.profile_dir = profile_dir
        self.store = store
        self.lockfile = lockfile
        self.local_state = local_state
        self.plugins = plugins
        self.system = system
        self.nixpkgs = nixpkgs
        self.process_state = process_state if process_state is not None else ProcessState()
        self.writer = writer if writer is not None else err_console

    # =========================================================================
    # Public API
    # =========================================================================

    def is_up_to_date(self, declared: Sequence[PackageReference], manifest_hash: str) -> bool:
        """Check the fast-path conditions without touching the store."""
        if not self.lockfile.is_up_to_date(ref.raw for ref in declared):
            return False
        return self.local_state.is_up_to_date(
            manifest_hash,
            self.lockfile.content_hash(),
            profile_signature(self.profile_dir),
        )

    def reconcile(
        self,
        mode: InstallMode,
        declared: Sequence[PackageReference],
        manifest_hash: str,
    ) -> ReconcileResult:
        """Converge the profile to the declared packages.

        Args:
            mode: What the reconciliation may do.
            declared: Effective declared packages in priority order.
            manifest_hash: Hash of the manifest the packages came from.

        Returns:
            ReconcileResult describing what changed.

        Raises:
            ExternalProcessError: If a store call fails.
            PackageNotFoundError: If an unlocked package does not exist.
            ResolutionError: If an unlocked package cannot be resolved.
            LockfileError: If the lockfile cannot be saved.
            PluginError: If plugins fail to regenerate their files.
        """
        result = ReconcileResult(mode=mode)
        if self.is_up_to_date(declared, manifest_hash):
            logger.debug("Profile %s is up to date", self.profile_dir)
            result.skipped = True
            return result

        if mode is InstallMode.ENSURE:
            self.writer.print("Ensuring packages are installed.")

        self._prepare_profile_dir()

        if mode is not InstallMode.UNINSTALL:
            self.lockfile.ensure_locked(ref.raw for ref in declared)
            self._prefetch(declared)
            pending = self.pending(declared, self.store.list(self.profile_dir))
            result.installed = self._install(pending, declared)

        snapshot = self.store.list(self.profile_dir)
        extras = self.extras(declared, snapshot)
        if mode is not InstallMode.INSTALL:
            result.removed = self._remove_items(extras)
            extras = []

        self.plugins.remove_invalid_symlinks()
        self.lockfile.tidy(ref.raw for ref in declared)
        self.lockfile.save()

        self.plugins.on_packages_changed(declared)
        self._record_state(manifest_hash, converged=not extras)
        return result

    def _record_state(self, manifest_hash: str, converged: bool) -> None:
        """Update the fast-path cache, or drop it while extras remain installed.

        The cache is advisory, so a failed write only costs a full run next time.
        """
        try:
            if not converged:
                logger.debug("Undeclared packages remain in %s", self.profile_dir)
                self.local_state.clear()
                return
            self.local_state.update(
                manifest_hash,
                self.lockfile.content_hash(),
                profile_signature(self.profile_dir),
            )
        except OSError as e:
            logger.warning("Could not write %s: %s", self.local_state.path, e)

    def remove_from_profile(self, references: Sequence[PackageReference]) -> list[str]:
        """Remove specific packages from the profile.

        All items are located in one listing and removed in descending
        index order. Packages that are not installed are reported and
        skipped.

        Returns:
            Raw strings of the packages that were removed.
        """
        self._prepare_profile_dir()
        snapshot = self.store.list(self.profile_dir)

        found: dict[int, tuple[ProfileItem, str]] = {}
        for ref in references:
            item = snapshot.find(ref, self.lockfile, self.system)
            if item is None:
                self.writer.print(
                    f"[error]Package {escape(ref.raw)} not found in profile. Skipping.[/error]"
                )
                continue
            found.setdefault(item.index, (item, ref.raw))

        removed: list[str] = []
        for index in sorted(found, reverse=True):
            item, raw = found[index]
            self.store.remove_by_index(self.profile_dir, item)
            removed.append(raw)
        return removed

    # =========================================================================
    # Diff computation
    # =========================================================================

    def pending(
        self,
        declared: Sequence[PackageReference],
        snapshot: ProfileSnapshot,
    ) -> list[PackageReference]:
        """Declared packages with no matching item in the snapshot, in declared order."""
        return [
            ref for ref in declared if snapshot.find(ref, self.lockfile, self.system) is None
        ]

    def extras(
        self,
        declared: Sequence[PackageReference],
        snapshot: ProfileSnapshot,
    ) -> list[ProfileItem]:
        """Profile items that match no declared package."""
        if self._store_paths_converged(declared, snapshot):
            logger.debug("Profile store paths match the lockfile, no extras")
            return []

        # Unlocked declarations have no identity yet; keep anything with their name
        unlocked = {
            ref.canonical_name
            for ref in declared
            if not ref.is_flake and self.lockfile.entry_for(ref) is None
        }
        return [
            item
            for item in snapshot
            if item.package_name not in unlocked
            and not any(item.matches(ref, self.lockfile, self.system) for ref in declared)
        ]

    def _store_paths_converged(
        self,
        declared: Sequence[PackageReference],
        snapshot: ProfileSnapshot,
    ) -> bool:
        """Check if the locked store paths are exactly the profile's store paths.

        Only answers True when every declared package has a locked store
        path for this system. Anything less needs the full comparison.
        """
        locked: set[str] = set()
        for ref in declared:
            entry = self.lockfile.entry_for(ref)
            path = entry.store_path_for(self.system) if entry is not None else None
            if path is None:
                return False
            locked.add(path)
        return locked == snapshot.store_paths()

    # =========================================================================
    # Store mutations
    # =========================================================================

    def _prepare_profile_dir(self) -> None:
        reset_profile_dir_for_flakes(self.profile_dir, self.process_state)
        ensure_dir(self.profile_dir.parent, "profile")

    def _prefetch(self, declared: Sequence[PackageReference]) -> None:
        """Fetch flake sources of packages without a locked store path.

        Each source is fetched once even if several packages share it.
        """
        seen: set[str] = set()
        for ref in declared:
            entry = self.lockfile.entry_for(ref)
            if entry is not None:
                if entry.store_path_for(self.system) is not None:
                    continue
                source = entry.flake_ref
            elif ref.is_flake:
                source = split_installable(ref.raw)[0]
            else:
                source = self.nixpkgs

            if source in seen:
                continue
            seen.add(source)
            self.store.prefetch(source)

    def _installable(self, ref: PackageReference) -> str:
        entry = self.lockfile.entry_for(ref)
        if entry is not None:
            return entry.resolved
        return ref.installable(self.nixpkgs)

    def _install(
        self,
        pending: Sequence[PackageReference],
        declared: Sequence[PackageReference],
    ) -> list[str]:
        """Install pending packages in order. The first failure propagates."""
        if not pending:
            return []

        names = [ref.raw for ref in pending]
        if len(names) == 1:
            message = f"Installing package: {names[0]}."
        else:
            message = f"Installing {len(names)} packages: {', '.join(names)}."
        self.writer.print(f"\n{escape(message)}\n")

        positions = {ref.raw: index for index, ref in enumerate(declared)}
        installed: list[str] = []
        total = len(pending)
        for step, ref in enumerate(pending, start=1):
            self.writer.print(f"[step]{escape(f'[{step}/{total}]')}[/step] {escape(ref.raw)}")
            self.store.install(
                self.profile_dir,
                self._installable(ref),
                priority=PRIORITY_BASE + positions.get(ref.raw, len(declared)),
            )
            installed.append(ref.raw)
        return installed

    def _remove_items(self, items: Sequence[ProfileItem]) -> list[str]:
        """Remove items of one snapshot, highest index first."""
        removed: list[str] = []
        for item in sorted(items, key=lambda i: i.index, reverse=True):
            self.store.remove_by_index(self.profile_dir, item)
            removed.append(item.package_name)
        if removed:
            self.writer.print(f"Removed {len(removed)} package(s) no longer in devbox.json.")
        return removed
