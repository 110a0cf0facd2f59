"""Plugin notifier.

Built-in plugins add configuration and a readme to well-known packages
(databases, web servers). Definitions are bundled as JSON in
``nixbox.data.plugins``. Besides plugin bookkeeping, the manager keeps
the wrapper scripts in ``.devbox/virtenv/.wrappers/bin`` in sync with
the executables installed in the project profile.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import stat
from collections.abc import Iterable, Sequence
from functools import cache
from importlib import resources
from pathlib import Path
from string import Template
from typing import TYPE_CHECKING, Annotated

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from rich.markup import escape

from nixbox.core.errors import PluginError
from nixbox.core.paths import get_virtenv_dir, get_wrappers_bin_dir

if TYPE_CHECKING:
    from rich.console import Console

    from nixbox.models.package import PackageReference

logger = logging.getLogger(__name__)


class PluginConfig(BaseModel):
    """A built-in plugin definition.

    Attributes:
        name: Plugin name.
        version: Plugin definition version.
        match: Regular expression matched against canonical package names.
        readme: Usage notes printed when the package is added.
        env: Environment variables; ``${virtenv}`` expands to the plugin's directory.
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    version: str
    match: Annotated[str, Field(description="Canonical name pattern")]
    readme: str = ""
    env: Annotated[dict[str, str], Field(default_factory=dict)]

    def matches(self, canonical_name: str) -> bool:
        return re.fullmatch(self.match, canonical_name) is not None

    def rendered_env(self, virtenv: Path) -> dict[str, str]:
        """Environment with ``${virtenv}`` expanded."""
        return {
            key: Template(value).safe_substitute(virtenv=str(virtenv))
            for key, value in self.env.items()
        }


@cache
def builtin_plugins() -> tuple[PluginConfig, ...]:
    """Load the bundled plugin definitions.

    Raises:
        PluginError: If a bundled definition is invalid.
    """
    plugins: list[PluginConfig] = []
    for entry in sorted(resources.files("nixbox.data.plugins").iterdir(), key=lambda e: e.name):
        if not entry.name.endswith(".json"):
            continue
        try:
            plugins.append(PluginConfig.model_validate(json.loads(entry.read_text("utf-8"))))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise PluginError(f"Invalid built-in plugin {entry.name}: {e}") from e
    return tuple(plugins)


def _wrapper_template() -> Template:
    source = resources.files("nixbox.data.templates").joinpath("wrapper.sh")
    return Template(source.read_text("utf-8"))


def _is_executable(path: Path) -> bool:
    try:
        mode = path.stat().st_mode
    except OSError:
        return False
    return stat.S_ISREG(mode) and bool(mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))


class PluginManager:
    """Narrow plugin interface used by the reconciler and the session.

    Attributes:
        project_dir: Project root.
        profile_dir: Project Nix profile.
    """

    def __init__(self, project_dir: Path, profile_dir: Path) -> None:
        self.project_dir = project_dir
        self.profile_dir = profile_dir

    @property
    def virtenv_dir(self) -> Path:
        return get_virtenv_dir(self.project_dir)

    @property
    def wrappers_dir(self) -> Path:
        return get_wrappers_bin_dir(self.project_dir)

    def plugin_for(self, reference: PackageReference) -> PluginConfig | None:
        """Return the built-in plugin for a package, if any."""
        if reference.is_flake:
            return None
        for plugin in builtin_plugins():
            if plugin.matches(reference.canonical_name):
                return plugin
        return None

    def has_plugin(self, reference: PackageReference) -> bool:
        """Check whether a package has a built-in plugin."""
        return self.plugin_for(reference) is not None

    def print_readme(self, reference: PackageReference, writer: Console) -> None:
        """Print a plugin's usage notes for a newly added package."""
        plugin = self.plugin_for(reference)
        if plugin is None:
            return

        writer.print()
        writer.print(f"[header]{escape(reference.canonical_name)} notes:[/header]")
        writer.print(escape(plugin.readme))
        env = plugin.rendered_env(self.virtenv_dir / reference.canonical_name)
        if env:
            writer.print()
            writer.print("[header]This plugin sets the following environment variables:[/header]")
            for key, value in env.items():
                writer.print(f"* {escape(key)}={escape(value)}")
        writer.print()

    def remove(self, references: Iterable[PackageReference]) -> None:
        """Delete the virtenv directories of plugin packages being removed.

        Raises:
            PluginError: If a directory cannot be deleted.
        """
        for ref in references:
            if not self.has_plugin(ref):
                continue
            target = self.virtenv_dir / ref.canonical_name
            if not target.exists():
                continue
            logger.debug("Removing plugin directory %s", target)
            try:
                shutil.rmtree(target)
            except OSError as e:
                raise PluginError(f"Failed to remove plugin files for {ref.raw}: {e}") from e

    def remove_invalid_symlinks(self) -> None:
        """Delete dangling symlinks under the virtenv directory.

        Raises:
            PluginError: If a symlink cannot be deleted.
        """
        if not self.virtenv_dir.exists():
            return
        for root, dirs, files in os.walk(self.virtenv_dir):
            for name in (*dirs, *files):
                path = Path(root) / name
                if path.is_symlink() and not path.exists():
                    logger.debug("Removing dangling symlink %s", path)
                    try:
                        path.unlink()
                    except OSError as e:
                        raise PluginError(f"Failed to remove symlink {path}: {e}") from e

    def on_packages_changed(self, packages: Sequence[PackageReference]) -> None:
        """Regenerate wrapper scripts for the executables in the profile.

        One wrapper is written per executable in the profile's ``bin``.
        Wrappers whose executable is gone are removed.

        Raises:
            PluginError: If wrappers cannot be written.
        """
        logger.debug("Regenerating wrappers for %d declared package(s)", len(packages))
        bin_dir = self.profile_dir / "bin"
        targets: dict[str, Path] = {}
        if bin_dir.is_dir():
            for path in sorted(bin_dir.iterdir()):
                if _is_executable(path):
                    targets[path.name] = path

        template = _wrapper_template()
        try:
            self.wrappers_dir.mkdir(parents=True, exist_ok=True)
            for existing in self.wrappers_dir.iterdir():
                if existing.name not in targets:
                    existing.unlink()
            for name, target in targets.items():
                wrapper = self.wrappers_dir / name
                wrapper.write_text(
                    template.substitute(project_dir=str(self.project_dir), target=str(target)),
                    encoding="utf-8",
                )
                wrapper.chmod(0o755)
        except OSError as e:
            raise PluginError(f"Failed to write wrappers in {self.wrappers_dir}: {e}") from e
