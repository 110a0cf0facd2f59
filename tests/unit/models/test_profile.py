"""Unit tests for profile listing models."""

from conftest import SYSTEM, make_entry
from nixbox.core.lockfile import Lockfile
from nixbox.models.lockfile import LockfileData
from nixbox.models.package import PackageReference
from nixbox.models.profile import (
    ProfileItem,
    ProfileSnapshot,
    normalize_attr_path,
    normalize_installable,
)


def _item(index: int, name: str, rev: str = "abc123", store_path: str | None = None) -> ProfileItem:
    return ProfileItem(
        index=index,
        attr_path=f"legacyPackages.{SYSTEM}.{name}",
        original_url="flake:nixpkgs",
        url=f"github:NixOS/nixpkgs/{rev}",
        store_paths=(store_path or f"/nix/store/{rev}-{name}-1.0",),
    )


class TestNormalize:
    """Tests for attribute path and installable normalization."""

    def test_strips_legacy_packages_prefix(self) -> None:
        assert normalize_attr_path("legacyPackages.aarch64-darwin.hello") == "hello"

    def test_strips_packages_prefix(self) -> None:
        assert normalize_attr_path("packages.x86_64-linux.default") == "default"

    def test_keeps_plain_attr(self) -> None:
        assert normalize_attr_path("python3Packages.requests") == "python3Packages.requests"

    def test_normalize_installable(self) -> None:
        """Indirect flake references lose their scheme."""
        installable = f"flake:nixpkgs#legacyPackages.{SYSTEM}.hello"

        assert normalize_installable(installable) == "nixpkgs#hello"


class TestProfileItem:
    """Tests for ProfileItem."""

    def test_installables(self) -> None:
        item = _item(0, "hello")

        assert item.package_name == "hello"
        assert item.installable == "github:NixOS/nixpkgs/abc123#hello"
        assert item.unlocked_installable == "nixpkgs#hello"

    def test_removal_key_prefers_name(self) -> None:
        """Newer listings name elements; older ones only have indices."""
        assert _item(3, "hello").removal_key == "3"
        named = ProfileItem(index=3, attr_path="hello", name="hello")
        assert named.removal_key == "hello"

    def test_matches_by_locked_store_path(self, tmp_path) -> None:
        """The locked store path identifies the item regardless of URL."""
        entry = make_entry("hello", rev="abc123")
        lockfile = Lockfile(tmp_path / "devbox.lock", LockfileData(packages={"hello": entry}))
        item = ProfileItem(
            index=0,
            attr_path="something-else",
            url="path:/elsewhere",
            store_paths=("/nix/store/abc123-hello-1.0",),
        )

        assert item.matches(PackageReference.parse("hello"), lockfile, SYSTEM)

    def test_matches_by_locked_installable(self, tmp_path) -> None:
        """Without a store path for the system, the locked installable decides."""
        entry = make_entry("hello", rev="abc123")
        lockfile = Lockfile(tmp_path / "devbox.lock", LockfileData(packages={"hello": entry}))
        item = _item(0, "hello", store_path="/nix/store/other")

        assert item.matches(PackageReference.parse("hello"), lockfile, "aarch64-darwin")

    def test_locked_mismatch(self, tmp_path) -> None:
        """A different revision of the same package is not a match."""
        entry = make_entry("hello", rev="abc123")
        lockfile = Lockfile(tmp_path / "devbox.lock", LockfileData(packages={"hello": entry}))

        assert not _item(0, "hello", rev="zzz").matches(
            PackageReference.parse("hello"), lockfile, SYSTEM
        )

    def test_unlocked_latest_matches_by_name(self) -> None:
        """An unlocked legacy name matches any item with that package name."""
        assert _item(0, "hello").matches(PackageReference.parse("hello"), None, SYSTEM)
        assert not _item(0, "curl").matches(PackageReference.parse("hello"), None, SYSTEM)

    def test_unlocked_flake_matches_original_url(self) -> None:
        """An unlocked flake matches the installable it was requested as."""
        ref = PackageReference.parse("nixpkgs#hello")

        assert _item(0, "hello").matches(ref, None, SYSTEM)

    def test_unlocked_pinned_version_never_matches(self) -> None:
        """A pinned version cannot be identified without its lock entry."""
        ref = PackageReference.parse("hello@1.0")

        assert not _item(0, "hello").matches(ref, None, SYSTEM)


class TestProfileSnapshot:
    """Tests for ProfileSnapshot."""

    def test_find_returns_first_match(self) -> None:
        snapshot = ProfileSnapshot(items=(_item(0, "curl"), _item(1, "hello"), _item(2, "hello")))

        found = snapshot.find(PackageReference.parse("hello"), None, SYSTEM)

        assert found is not None
        assert found.index == 1

    def test_find_none(self) -> None:
        snapshot = ProfileSnapshot(items=(_item(0, "curl"),))

        assert snapshot.find(PackageReference.parse("hello"), None, SYSTEM) is None

    def test_store_paths_and_len(self) -> None:
        snapshot = ProfileSnapshot(items=(_item(0, "curl"), _item(1, "hello")))

        assert len(snapshot) == 2
        assert snapshot.store_paths() == {
            "/nix/store/abc123-curl-1.0",
            "/nix/store/abc123-hello-1.0",
        }
        assert [item.index for item in snapshot] == [0, 1]
