"""Unit tests for the nix CLI profile store."""

import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from nixbox.core.errors import ExternalProcessError
from nixbox.models.profile import ProfileItem
from nixbox.store.nix import (
    EXPERIMENTAL_FLAGS,
    NixStore,
    StoreUnavailableError,
    detect_system,
    parse_profile_json,
    parse_profile_text,
)
from nixbox.utils.shell import CommandResult

SYSTEM = "x86_64-linux"


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(stdout=stdout, stderr="", returncode=0)


def failed(stderr: str, returncode: int = 1) -> CommandResult:
    return CommandResult(stdout="", stderr=stderr, returncode=returncode)


@pytest.fixture
def profile_dir(tmp_path: Path) -> Path:
    generation = tmp_path / "default-1-link"
    generation.mkdir()
    profile = tmp_path / "default"
    profile.symlink_to(generation.name)
    return profile


@pytest.fixture
def nix_store() -> NixStore:
    return NixStore(system=SYSTEM, install_timeout=900)


class TestDetectSystem:
    """Tests for detect_system."""

    @patch("nixbox.store.nix.platform")
    def test_linux_amd64(self, mock_platform: MagicMock) -> None:
        mock_platform.machine.return_value = "AMD64"
        mock_platform.system.return_value = "Linux"

        assert detect_system() == "x86_64-linux"

    @patch("nixbox.store.nix.platform")
    def test_darwin_arm(self, mock_platform: MagicMock) -> None:
        mock_platform.machine.return_value = "arm64"
        mock_platform.system.return_value = "Darwin"

        assert detect_system() == "aarch64-darwin"


class TestParseProfile:
    """Tests for profile listing parsers."""

    def test_json_array_elements(self) -> None:
        output = json.dumps(
            {
                "version": 2,
                "elements": [
                    {
                        "attrPath": f"legacyPackages.{SYSTEM}.hello",
                        "originalUrl": "flake:nixpkgs",
                        "url": "github:NixOS/nixpkgs/abc",
                        "storePaths": ["/nix/store/abc-hello"],
                        "active": True,
                        "priority": 5,
                    }
                ],
            }
        )

        snapshot = parse_profile_json(output)

        item = snapshot.items[0]
        assert item.index == 0
        assert item.name is None
        assert item.package_name == "hello"
        assert item.priority == 5
        assert item.removal_key == "0"

    def test_json_named_elements(self) -> None:
        output = json.dumps(
            {
                "version": 3,
                "elements": {
                    "curl": {"attrPath": "curl", "url": "github:a/b", "storePaths": ["/x"]},
                    "hello": {"attrPath": "hello", "url": "github:a/b", "storePaths": ["/y"]},
                },
            }
        )

        snapshot = parse_profile_json(output)

        assert [(item.index, item.removal_key) for item in snapshot] == [
            (0, "curl"),
            (1, "hello"),
        ]

    def test_json_empty_output(self) -> None:
        assert len(parse_profile_json("  \n")) == 0

    def test_text_listing(self) -> None:
        output = (
            "0 flake:nixpkgs#legacyPackages.x86_64-linux.hello "
            "github:NixOS/nixpkgs/abc#legacyPackages.x86_64-linux.hello /nix/store/abc-hello\n"
            "warning: something unrelated\n"
        )

        snapshot = parse_profile_text(output)

        assert len(snapshot) == 1
        item = snapshot.items[0]
        assert item.installable == "github:NixOS/nixpkgs/abc#hello"
        assert item.unlocked_installable == "nixpkgs#hello"
        assert item.store_paths == ("/nix/store/abc-hello",)


@patch("nixbox.store.nix.command_exists", return_value=True)
@patch("nixbox.store.nix.run_command")
class TestNixStore:
    """Tests for NixStore commands."""

    def test_list_missing_profile_runs_nothing(
        self, mock_run: MagicMock, _exists: MagicMock, nix_store: NixStore, tmp_path: Path
    ) -> None:
        snapshot = nix_store.list(tmp_path / "nothing")

        assert len(snapshot) == 0
        mock_run.assert_not_called()

    def test_list_json(
        self, mock_run: MagicMock, _exists: MagicMock, nix_store: NixStore, profile_dir: Path
    ) -> None:
        mock_run.return_value = ok(json.dumps({"elements": [{"attrPath": "hello"}]}))

        snapshot = nix_store.list(profile_dir)

        assert len(snapshot) == 1
        cmd = mock_run.call_args.args[0]
        assert cmd == [
            "nix",
            "profile",
            "list",
            "--json",
            "--profile",
            str(profile_dir),
            *EXPERIMENTAL_FLAGS,
        ]

    def test_list_falls_back_to_text(
        self, mock_run: MagicMock, _exists: MagicMock, nix_store: NixStore, profile_dir: Path
    ) -> None:
        mock_run.side_effect = [
            failed("error: unrecognised flag '--json'"),
            ok("0 flake:nixpkgs#hello github:NixOS/nixpkgs/abc#hello /nix/store/abc-hello\n"),
        ]

        snapshot = nix_store.list(profile_dir)

        assert snapshot.items[0].package_name == "hello"
        assert "--json" not in mock_run.call_args.args[0]

    def test_list_failure_raises_with_nix_output(
        self, mock_run: MagicMock, _exists: MagicMock, nix_store: NixStore, profile_dir: Path
    ) -> None:
        mock_run.return_value = failed("error: profile is corrupt\n")

        with pytest.raises(ExternalProcessError, match="^error: profile is corrupt$"):
            nix_store.list(profile_dir)

    def test_install_with_priority(
        self, mock_run: MagicMock, _exists: MagicMock, nix_store: NixStore, profile_dir: Path
    ) -> None:
        mock_run.return_value = ok()

        nix_store.install(profile_dir, "github:NixOS/nixpkgs/abc#hello", priority=6)

        cmd = mock_run.call_args.args[0]
        assert cmd[:5] == ["nix", "profile", "install", "--profile", str(profile_dir)]
        assert cmd[5:8] == ["--priority", "6", "github:NixOS/nixpkgs/abc#hello"]
        assert mock_run.call_args.kwargs["timeout"] == 900

    def test_install_failure(
        self, mock_run: MagicMock, _exists: MagicMock, nix_store: NixStore, profile_dir: Path
    ) -> None:
        mock_run.return_value = failed("error: builder for '/nix/store/x.drv' failed")

        with pytest.raises(ExternalProcessError) as exc_info:
            nix_store.install(profile_dir, "nixpkgs#broken")

        assert exc_info.value.returncode == 1
        assert str(exc_info.value) == "error: builder for '/nix/store/x.drv' failed"

    def test_install_timeout(
        self, mock_run: MagicMock, _exists: MagicMock, nix_store: NixStore, profile_dir: Path
    ) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired(cmd=["nix"], timeout=900)

        with pytest.raises(ExternalProcessError, match="timed out after 900s"):
            nix_store.install(profile_dir, "nixpkgs#hello")

    def test_remove_uses_removal_key(
        self, mock_run: MagicMock, _exists: MagicMock, nix_store: NixStore, profile_dir: Path
    ) -> None:
        mock_run.return_value = ok()

        nix_store.remove_by_index(profile_dir, ProfileItem(index=2, attr_path="hello"))
        nix_store.remove_by_index(profile_dir, ProfileItem(index=0, attr_path="a", name="curl"))

        removed = [call.args[0][5] for call in mock_run.call_args_list]
        assert removed == ["2", "curl"]

    def test_resolve(self, mock_run: MagicMock, _exists: MagicMock, nix_store: NixStore) -> None:
        mock_run.side_effect = [
            ok(
                json.dumps(
                    {
                        "url": "github:NixOS/nixpkgs/abc",
                        "lastModified": 1700000000,
                        "locked": {"narHash": "sha256-xyz"},
                    }
                )
            ),
            ok(json.dumps({"name": "hello-2.12", "version": "2.12", "outPath": "/nix/store/h"})),
        ]

        entry = nix_store.resolve("nixpkgs#hello")

        assert entry is not None
        assert entry.resolved == "github:NixOS/nixpkgs/abc#hello"
        assert entry.version == "2.12"
        assert entry.source == "nix"
        assert entry.hash == "sha256-xyz"
        assert entry.last_modified is not None
        assert entry.store_path_for(SYSTEM) == "/nix/store/h"

    def test_resolve_missing_attribute(
        self, mock_run: MagicMock, _exists: MagicMock, nix_store: NixStore
    ) -> None:
        mock_run.side_effect = [
            ok(json.dumps({"url": "github:NixOS/nixpkgs/abc"})),
            failed("error: flake 'github:NixOS/nixpkgs/abc' does not provide attribute 'nope'"),
        ]

        assert nix_store.resolve("nixpkgs#nope") is None

    def test_resolve_other_failure_raises(
        self, mock_run: MagicMock, _exists: MagicMock, nix_store: NixStore
    ) -> None:
        mock_run.return_value = failed("error: unable to download: HTTP 503")

        with pytest.raises(ExternalProcessError, match="HTTP 503"):
            nix_store.resolve("github:owner/repo#pkg")

    def test_prefetch(self, mock_run: MagicMock, _exists: MagicMock, nix_store: NixStore) -> None:
        mock_run.return_value = ok()

        nix_store.prefetch("github:NixOS/nixpkgs/abc")

        assert mock_run.call_args.args[0][:4] == [
            "nix",
            "flake",
            "prefetch",
            "github:NixOS/nixpkgs/abc",
        ]

    def test_unavailable(
        self, mock_run: MagicMock, mock_exists: MagicMock, nix_store: NixStore, profile_dir: Path
    ) -> None:
        mock_exists.return_value = False

        with pytest.raises(StoreUnavailableError):
            nix_store.install(profile_dir, "nixpkgs#hello")
        assert not nix_store.is_available()
        mock_run.assert_not_called()
