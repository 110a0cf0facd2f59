"""Supporting-file generation.

Renders the bundled templates in ``nixbox.data.templates`` with
``string.Template`` and writes them into the project. Existing files are
only overwritten when forced.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from importlib import resources
from pathlib import Path
from string import Template

from nixbox import __version__
from nixbox.core.errors import NixboxError
from nixbox.models.package import PackageReference

logger = logging.getLogger(__name__)

DEVCONTAINER_DIRNAME = ".devcontainer"
DOCKERFILE_NAME = "Dockerfile"
DEVCONTAINER_JSON_NAME = "devcontainer.json"
ENVRC_NAME = ".envrc"

CONTAINER_USER = "devbox"

# Canonical package name prefix -> VS Code extension
_EXTENSIONS = {
    "go": "golang.go",
    "python": "ms-python.python",
    "nodejs": "dbaeumer.vscode-eslint",
    "rustc": "rust-lang.rust-analyzer",
    "cargo": "rust-lang.rust-analyzer",
    "php": "bmewburn.vscode-intelephense-client",
    "ruby": "Shopify.ruby-lsp",
}
_DEFAULT_EXTENSIONS = ("jnoortheen.nix-ide",)


class GenerateError(NixboxError):
    """Raised when a supporting file cannot be generated."""


def _render(template_name: str, **values: str) -> str:
    source = resources.files("nixbox.data.templates").joinpath(template_name)
    return Template(source.read_text("utf-8")).substitute(**values)


def _write(path: Path, content: str, force: bool) -> Path:
    """Write a generated file.

    Raises:
        GenerateError: If the file exists and force is False, or cannot be written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w" if force else "x", encoding="utf-8") as f:
            f.write(content)
    except FileExistsError as e:
        msg = f"{path} already exists, use --force to overwrite it"
        raise GenerateError(msg) from e
    except OSError as e:
        raise GenerateError(f"Failed to write {path}: {e}") from e
    logger.debug("Generated %s", path)
    return path


def vscode_extensions(packages: Iterable[PackageReference]) -> list[str]:
    """VS Code extensions matching the declared packages."""
    extensions = list(_DEFAULT_EXTENSIONS)
    for ref in packages:
        if ref.is_flake:
            continue
        for prefix, extension in _EXTENSIONS.items():
            if ref.canonical_name.startswith(prefix) and extension not in extensions:
                extensions.append(extension)
    return extensions


def dockerfile_content() -> str:
    """Dockerfile that installs the project with nixbox."""
    return _render(DOCKERFILE_NAME, user=CONTAINER_USER, version=__version__)


def devcontainer_content(project_dir: Path, packages: Iterable[PackageReference]) -> str:
    """devcontainer.json for the project."""
    return _render(
        DEVCONTAINER_JSON_NAME,
        name=project_dir.name,
        user=CONTAINER_USER,
        extensions=json.dumps(vscode_extensions(packages)),
    )


def envrc_content() -> str:
    """.envrc body for direnv."""
    return _render("envrc")


def generate_dockerfile(project_dir: Path, force: bool = False) -> Path:
    """Write a Dockerfile at the project root.

    Raises:
        GenerateError: If the file exists and force is False.
    """
    return _write(project_dir / DOCKERFILE_NAME, dockerfile_content(), force)


def generate_devcontainer(
    project_dir: Path,
    packages: Iterable[PackageReference] = (),
    force: bool = False,
) -> list[Path]:
    """Write Dockerfile and devcontainer.json under .devcontainer/.

    Raises:
        GenerateError: If a file exists and force is False.
    """
    target = project_dir / DEVCONTAINER_DIRNAME
    return [
        _write(target / DOCKERFILE_NAME, dockerfile_content(), force),
        _write(
            target / DEVCONTAINER_JSON_NAME,
            devcontainer_content(project_dir, packages),
            force,
        ),
    ]


def generate_envrc(project_dir: Path, force: bool = False) -> Path:
    """Write a .envrc that integrates direnv with the project.

    Raises:
        GenerateError: If the file exists and force is False.
    """
    return _write(project_dir / ENVRC_NAME, envrc_content(), force)
