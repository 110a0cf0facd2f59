"""Unit tests for the plugin manager."""

import os
from pathlib import Path

import pytest
from nixbox.core.errors import PluginError
from nixbox.core.paths import get_profile_dir
from nixbox.models.package import PackageReference
from nixbox.plugins import PluginConfig, PluginManager, builtin_plugins
from rich.console import Console


@pytest.fixture
def manager(project_dir: Path) -> PluginManager:
    return PluginManager(project_dir, get_profile_dir(project_dir))


def _profile_bin(manager: PluginManager, *names: str) -> Path:
    """Create a profile generation whose bin holds the given executables."""
    generation = manager.profile_dir.parent / "default-1-link"
    bin_dir = generation / "bin"
    bin_dir.mkdir(parents=True)
    for name in names:
        path = bin_dir / name
        path.write_text("#!/bin/sh\n")
        path.chmod(0o755)
    manager.profile_dir.symlink_to(generation.name)
    return bin_dir


class TestBuiltinPlugins:
    """Tests for the bundled plugin definitions."""

    def test_all_bundled_plugins_load(self) -> None:
        names = {plugin.name for plugin in builtin_plugins()}

        assert {"postgresql", "redis", "nginx", "php"} <= names

    def test_match_is_full(self) -> None:
        plugin = PluginConfig(name="pg", version="1", match="^postgresql(_[0-9]+)?$")

        assert plugin.matches("postgresql")
        assert plugin.matches("postgresql_15")
        assert not plugin.matches("postgresql-client")

    def test_rendered_env(self, tmp_path: Path) -> None:
        plugin = PluginConfig(
            name="x", version="1", match="x", env={"DATA": "${virtenv}/data", "KEEP": "$HOME"}
        )

        env = plugin.rendered_env(tmp_path)

        assert env == {"DATA": f"{tmp_path}/data", "KEEP": "$HOME"}


class TestPluginLookup:
    """Tests for plugin_for and has_plugin."""

    def test_versioned_name(self, manager: PluginManager) -> None:
        plugin = manager.plugin_for(PackageReference.parse("postgresql@15"))

        assert plugin is not None
        assert plugin.name == "postgresql"

    def test_no_plugin(self, manager: PluginManager) -> None:
        assert not manager.has_plugin(PackageReference.parse("hello"))

    def test_flakes_have_no_plugin(self, manager: PluginManager) -> None:
        assert not manager.has_plugin(PackageReference.parse("nixpkgs#postgresql"))


class TestPrintReadme:
    """Tests for print_readme."""

    def test_prints_notes_and_env(self, manager: PluginManager, writer: Console) -> None:
        manager.print_readme(PackageReference.parse("postgresql@15"), writer)

        output = writer.export_text()
        assert "postgresql notes:" in output
        assert "initdb" in output
        assert f"PGDATA={manager.virtenv_dir / 'postgresql'}/data" in output

    def test_silent_without_plugin(self, manager: PluginManager, writer: Console) -> None:
        manager.print_readme(PackageReference.parse("hello"), writer)

        assert writer.export_text() == ""


class TestRemove:
    """Tests for removing plugin files."""

    def test_removes_virtenv_of_plugin_packages(self, manager: PluginManager) -> None:
        pg_dir = manager.virtenv_dir / "postgresql" / "data"
        pg_dir.mkdir(parents=True)
        other = manager.virtenv_dir / "hello"
        other.mkdir()

        manager.remove(
            [PackageReference.parse("postgresql@15"), PackageReference.parse("hello")]
        )

        assert not (manager.virtenv_dir / "postgresql").exists()
        assert other.exists()

    def test_missing_directory_is_fine(self, manager: PluginManager) -> None:
        manager.remove([PackageReference.parse("redis")])

    def test_dangling_symlinks(self, manager: PluginManager) -> None:
        manager.virtenv_dir.mkdir(parents=True)
        real = manager.virtenv_dir / "real"
        real.write_text("x")
        good = manager.virtenv_dir / "good"
        good.symlink_to(real)
        dangling = manager.virtenv_dir / "dangling"
        dangling.symlink_to(manager.virtenv_dir / "gone")

        manager.remove_invalid_symlinks()

        assert good.is_symlink()
        assert not dangling.is_symlink()

    def test_dangling_symlinks_without_virtenv(self, manager: PluginManager) -> None:
        manager.remove_invalid_symlinks()

        assert not manager.virtenv_dir.exists()


class TestWrappers:
    """Tests for wrapper regeneration."""

    def test_writes_one_wrapper_per_executable(
        self, manager: PluginManager, project_dir: Path
    ) -> None:
        bin_dir = _profile_bin(manager, "hello", "curl")
        (bin_dir / "README").write_text("not executable")

        manager.on_packages_changed([PackageReference.parse("hello")])

        wrappers = sorted(p.name for p in manager.wrappers_dir.iterdir())
        assert wrappers == ["curl", "hello"]
        script = (manager.wrappers_dir / "hello").read_text()
        assert f'export NIXBOX_PROJECT_ROOT="{project_dir}"' in script
        assert f'exec "{manager.profile_dir / "bin" / "hello"}" "$@"' in script
        assert os.access(manager.wrappers_dir / "hello", os.X_OK)

    def test_removes_stale_wrappers(self, manager: PluginManager) -> None:
        _profile_bin(manager, "hello")
        manager.wrappers_dir.mkdir(parents=True)
        (manager.wrappers_dir / "old-tool").write_text("#!/bin/sh\n")

        manager.on_packages_changed([])

        assert [p.name for p in manager.wrappers_dir.iterdir()] == ["hello"]

    def test_no_profile(self, manager: PluginManager) -> None:
        manager.on_packages_changed([])

        assert list(manager.wrappers_dir.iterdir()) == []

    def test_write_failure(self, manager: PluginManager) -> None:
        _profile_bin(manager, "hello")
        manager.wrappers_dir.parent.mkdir(parents=True)
        manager.wrappers_dir.write_text("a file where a directory belongs")

        with pytest.raises(PluginError, match="Failed to write wrappers"):
            manager.on_packages_changed([])
