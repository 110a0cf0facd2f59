"""Pytest configuration and shared fixtures.

This module contains fixtures used across all test modules, most
importantly an in-memory profile store that drives the reconciler
without Nix.
"""

from __future__ import annotations

import io
import json
from collections.abc import Iterator, Sequence
from pathlib import Path

import pytest
from nixbox.core.errors import ExternalProcessError
from nixbox.core.local_state import LocalStateCache
from nixbox.core.lockfile import Lockfile
from nixbox.core.paths import get_profile_dir
from nixbox.core.reconciler import ProcessState, Reconciler
from nixbox.core.resolve import Resolver
from nixbox.core.theme import get_theme
from nixbox.models.lockfile import LockedSystem, LockEntry, split_installable
from nixbox.models.package import PackageReference
from nixbox.models.profile import ProfileItem, ProfileSnapshot
from nixbox.store.base import ProfileStore
from rich.console import Console

SYSTEM = "x86_64-linux"
NIXPKGS_GITHUB = "github:NixOS/nixpkgs"


def make_entry(name: str, rev: str = "abc123", version: str = "1.0") -> LockEntry:
    """Lock entry pinning a nixpkgs package to a revision."""
    return LockEntry(
        resolved=f"{NIXPKGS_GITHUB}/{rev}#{name}",
        version=version,
        source="search",
        systems={SYSTEM: LockedSystem(store_path=f"/nix/store/{rev}-{name}-{version}")},
    )


class FakeStore(ProfileStore):
    """In-memory profile store.

    Installed elements are kept as (installable, store_path) pairs.
    Every mutation moves the profile symlink to a new generation, like
    ``nix profile`` does.
    """

    def __init__(self, system: str = SYSTEM) -> None:
        self.system = system
        self.elements: list[tuple[str, str]] = []
        self.catalog: dict[str, LockEntry] = {}
        self.calls: list[tuple[str, ...]] = []
        self.priorities: dict[str, int | None] = {}
        self.fail_install: set[str] = set()
        self._generation = 0

    def publish(self, name: str, rev: str = "abc123", version: str = "1.0") -> LockEntry:
        """Make a package resolvable as ``nixpkgs#name`` and return its entry."""
        entry = make_entry(name, rev, version)
        self.catalog[f"nixpkgs#{name}"] = entry
        self.catalog[entry.resolved] = entry
        return entry

    def preinstall(self, profile_dir: Path, installable: str, store_path: str) -> None:
        """Put an element in the profile without recording a call."""
        self.elements.append((installable, store_path))
        self._bump(profile_dir)

    @property
    def mutations(self) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[0] in ("install", "remove")]

    def is_available(self) -> bool:
        return True

    def list(self, profile_dir: Path) -> ProfileSnapshot:
        self.calls.append(("list",))
        items = []
        for index, (installable, store_path) in enumerate(self.elements):
            flake, attr = split_installable(installable)
            if flake.startswith(NIXPKGS_GITHUB) or flake == "nixpkgs":
                attr = f"legacyPackages.{self.system}.{attr}"
            items.append(
                ProfileItem(
                    index=index,
                    attr_path=attr,
                    original_url=flake,
                    url=flake,
                    store_paths=(store_path,),
                )
            )
        return ProfileSnapshot(items=tuple(items))

    def install(self, profile_dir: Path, installable: str, priority: int | None = None) -> None:
        self.calls.append(("install", installable))
        if installable in self.fail_install:
            raise ExternalProcessError(
                ["nix", "profile", "install", installable], 1, f"error: cannot build {installable}"
            )
        entry = self.catalog.get(installable)
        attr = split_installable(installable)[1]
        store_path = entry.store_path_for(self.system) if entry else f"/nix/store/fake-{attr}"
        self.elements.append((installable, store_path or f"/nix/store/fake-{attr}"))
        self.priorities[installable] = priority
        self._bump(profile_dir)

    def remove_by_index(self, profile_dir: Path, item: ProfileItem) -> None:
        self.calls.append(("remove", str(item.index)))
        del self.elements[item.index]
        self._bump(profile_dir)

    def resolve(self, installable: str) -> LockEntry | None:
        self.calls.append(("resolve", installable))
        return self.catalog.get(installable)

    def prefetch(self, flake_ref: str) -> None:
        self.calls.append(("prefetch", flake_ref))

    def installed(self) -> list[str]:
        return [installable for installable, _ in self.elements]

    def _bump(self, profile_dir: Path) -> None:
        self._generation += 1
        generation = profile_dir.parent / f"default-{self._generation}-link"
        generation.mkdir(parents=True, exist_ok=True)
        if profile_dir.is_symlink():
            profile_dir.unlink()
        profile_dir.symlink_to(generation.name)


class RecordingPlugins:
    """Plugin notifier that records calls."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.changed: list[list[str]] = []
        self.error: Exception | None = None

    def on_packages_changed(self, packages: Sequence[PackageReference]) -> None:
        self.calls.append("on_packages_changed")
        if self.error is not None:
            raise self.error
        self.changed.append([ref.raw for ref in packages])

    def remove(self, packages: Sequence[PackageReference]) -> None:
        self.calls.append("remove")

    def print_readme(self, reference: PackageReference, writer: Console) -> None:
        self.calls.append(f"print_readme:{reference.raw}")

    def remove_invalid_symlinks(self) -> None:
        self.calls.append("remove_invalid_symlinks")

    def has_plugin(self, reference: PackageReference) -> bool:
        return False


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Point the XDG config directory at tmp_path and clear nixbox overrides."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    for name in ("NIXBOX_SEARCH_URL", "NIXBOX_SYSTEM", "NIXBOX_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def writer() -> Console:
    """Themed console writing to memory."""
    return Console(theme=get_theme(), record=True, width=200, file=io.StringIO())


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Project directory with an empty devbox.json."""
    project = tmp_path / "project"
    project.mkdir()
    (project / "devbox.json").write_text(json.dumps({"packages": []}, indent=2) + "\n")
    return project


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def plugins() -> RecordingPlugins:
    return RecordingPlugins()


@pytest.fixture
def lockfile(project_dir: Path, store: FakeStore) -> Lockfile:
    return Lockfile.load(project_dir, Resolver(store))


@pytest.fixture
def reconciler(
    project_dir: Path,
    store: FakeStore,
    lockfile: Lockfile,
    plugins: RecordingPlugins,
    writer: Console,
) -> Reconciler:
    profile_dir = get_profile_dir(project_dir)
    return Reconciler(
        profile_dir,
        store,
        lockfile,
        LocalStateCache.for_project(project_dir),
        plugins,  # type: ignore[arg-type]
        system=SYSTEM,
        process_state=ProcessState(),
        writer=writer,
    )
