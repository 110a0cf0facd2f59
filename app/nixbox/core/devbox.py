"""Project session.

A Devbox owns the manifest, the lockfile and the local state of one
project for the length of one command, and exposes the three top-level
operations: add, remove and ensure. Each operation holds the project
lock for its whole transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from nixbox.core.config import ProjectConfig, load_config, manifest_hash, save_config
from nixbox.core.errors import PackageNotInManifestError
from nixbox.core.local_state import LocalStateCache
from nixbox.core.lockfile import Lockfile
from nixbox.core.paths import get_profile_dir
from nixbox.core.reconciler import (
    InstallMode,
    ProcessState,
    ProjectLock,
    ReconcileResult,
    Reconciler,
)
from nixbox.core.resolve import Resolver
from nixbox.core.settings import Settings, load_settings
from nixbox.models.package import (
    PackageReference,
    effective_packages,
    parse_references,
    require_by_canonical_name,
)
from nixbox.plugins.manager import PluginManager
from nixbox.search.client import SearchClient
from nixbox.store.base import ProfileStore
from nixbox.store.nix import NixStore, detect_system
from nixbox.utils.formatting import err_console

logger = logging.getLogger(__name__)


def _unique(names: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(names))


class Devbox:
    """A loaded project.

    Use :meth:`open` to construct one from a project directory.

    Attributes:
        project_dir: Project root containing devbox.json.
        config: Parsed devbox.json, mutated in memory.
        lockfile: Parsed devbox.lock, mutated in memory.
    """

    def __init__(
        self,
        project_dir: Path,
        config: ProjectConfig,
        lockfile: Lockfile,
        reconciler: Reconciler,
        plugins: PluginManager,
        *,
        writer: Console,
        search: SearchClient | None = None,
    ) -> None:
        self.project_dir = project_dir
        self.config = config
        self.lockfile = lockfile
        self.reconciler = reconciler
        self.plugins = plugins
        self.writer = writer
        self._search = search

    @classmethod
    def open(
        cls,
        project_dir: Path,
        *,
        store: ProfileStore | None = None,
        search: SearchClient | None = None,
        plugins: PluginManager | None = None,
        settings: Settings | None = None,
        writer: Console | None = None,
        process_state: ProcessState | None = None,
    ) -> Devbox:
        """Load a project.

        Args:
            project_dir: Project root containing devbox.json.
            store: Package store. Defaults to the nix CLI.
            search: Search client. Created from settings when search is
                enabled and none is given.
            plugins: Plugin notifier. Defaults to the built-in plugins.
            settings: User settings. Loaded from disk if None.
            writer: Console for progress output. Defaults to stderr.
            process_state: Process-scoped flags shared across sessions.

        Raises:
            ConfigError: If devbox.json is missing or invalid.
            LockfileError: If devbox.lock is invalid.
            SettingsError: If the user settings are invalid.
        """
        project_dir = project_dir.resolve()
        settings = settings if settings is not None else load_settings()
        config = load_config(project_dir)
        system = settings.system or detect_system()

        if store is None:
            store = NixStore(system=system, install_timeout=float(settings.install_timeout))
        if search is None and settings.search_enabled:
            search = SearchClient(settings.search_url)

        commit = config.nixpkgs.commit if config.nixpkgs is not None else None
        nixpkgs = settings.nixpkgs_ref(commit)
        resolver = Resolver(store, search=search, nixpkgs=nixpkgs)
        lockfile = Lockfile.load(project_dir, resolver)

        profile_dir = get_profile_dir(project_dir)
        plugins = plugins if plugins is not None else PluginManager(project_dir, profile_dir)
        writer = writer if writer is not None else err_console

        reconciler = Reconciler(
            profile_dir,
            store,
            lockfile,
            LocalStateCache.for_project(project_dir),
            plugins,
            system=system,
            nixpkgs=nixpkgs,
            process_state=process_state,
            writer=writer,
        )
        return cls(
            project_dir,
            config,
            lockfile,
            reconciler,
            plugins,
            writer=writer,
            search=search,
        )

    def close(self) -> None:
        if self._search is not None:
            self._search.close()

    def __enter__(self) -> Devbox:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def profile_dir(self) -> Path:
        """Path of the project's Nix profile."""
        return self.reconciler.profile_dir

    def packages(self) -> list[PackageReference]:
        """Effective declared packages in priority order."""
        return effective_packages(parse_references(self.config.packages))

    # =========================================================================
    # Operations
    # =========================================================================

    def add(self, *names: str) -> ReconcileResult:
        """Declare and install packages.

        Packages already declared in the same versioned form are skipped.
        A declared package with the same canonical name is replaced in
        place. Every new package is resolved before anything changes, so
        a missing package leaves the project untouched.

        Raises:
            PackageNotFoundError: If a package does not exist.
            AmbiguousMatchError: If a name matches more than one declared package.
            ExternalProcessError: If the store fails.
        """
        with ProjectLock(self.project_dir):
            packages = list(self.config.packages)
            added: list[PackageReference] = []
            replaced: list[PackageReference] = []

            for ref in parse_references(_unique(names)):
                versioned = ref.versioned
                if versioned in packages:
                    logger.debug("%s is already declared", versioned)
                    continue

                existing = self._lookup(parse_references(packages), ref.canonical_name)
                if existing is not None:
                    packages[packages.index(existing.raw)] = versioned
                    replaced.append(existing)
                else:
                    packages.append(versioned)
                added.append(PackageReference.parse(versioned))

            # Resolves into the in-memory lockfile only; raises before any mutation
            self.lockfile.add(*(ref.raw for ref in added))

            if replaced:
                self.reconciler.remove_from_profile(replaced)
                self.lockfile.remove(*(ref.raw for ref in replaced))
            self.config.packages = packages

            result = self._reconcile(InstallMode.INSTALL)
            save_config(self.config, self.project_dir)

            for ref in added:
                self.plugins.print_readme(ref, self.writer)
            return result

    def remove(self, *names: str) -> ReconcileResult:
        """Undeclare and uninstall packages.

        Names not declared in devbox.json are reported in one warning;
        the others are removed regardless.

        Raises:
            AmbiguousMatchError: If a name matches more than one declared package.
            ExternalProcessError: If the store fails.
        """
        with ProjectLock(self.project_dir):
            declared = parse_references(self.config.packages)
            to_remove: list[PackageReference] = []
            missing: list[str] = []

            for name in _unique(names):
                try:
                    found = require_by_canonical_name(declared, name)
                except PackageNotInManifestError:
                    missing.append(name)
                    continue
                if found not in to_remove:
                    to_remove.append(found)

            if missing:
                self.writer.print(
                    "[warning]Warning:[/warning] the following packages were not found "
                    f"in your devbox.json: {escape(', '.join(missing))}"
                )

            raws = {ref.raw for ref in to_remove}
            self.config.packages = [p for p in self.config.packages if p not in raws]

            self.plugins.remove(to_remove)
            self.reconciler.remove_from_profile(to_remove)
            self.lockfile.remove(*raws)

            result = self._reconcile(InstallMode.UNINSTALL)
            save_config(self.config, self.project_dir)
            result.undeclared = missing
            return result

    def ensure(self) -> ReconcileResult:
        """Converge the profile to devbox.json, locking anything unlocked.

        Raises:
            PackageNotFoundError: If a declared package does not exist.
            ExternalProcessError: If the store fails.
        """
        with ProjectLock(self.project_dir):
            return self._reconcile(InstallMode.ENSURE)

    # =========================================================================
    # Internals
    # =========================================================================

    def _reconcile(self, mode: InstallMode) -> ReconcileResult:
        return self.reconciler.reconcile(mode, self.packages(), manifest_hash(self.config))

    @staticmethod
    def _lookup(declared: list[PackageReference], name: str) -> PackageReference | None:
        """Find the declared package to replace, failing on ambiguity."""
        try:
            return require_by_canonical_name(declared, name)
        except PackageNotInManifestError:
            return None
