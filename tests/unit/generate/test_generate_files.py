"""Unit tests for supporting-file generation."""

import json
from pathlib import Path

import pytest
from nixbox import __version__
from nixbox.generate import (
    GenerateError,
    dockerfile_content,
    envrc_content,
    generate_devcontainer,
    generate_dockerfile,
    generate_envrc,
    vscode_extensions,
)
from nixbox.models.package import parse_references


class TestContent:
    """Tests for rendered templates."""

    def test_dockerfile(self) -> None:
        content = dockerfile_content()

        assert content.startswith("FROM debian:stable-slim")
        assert f"nixbox=={__version__}" in content
        assert "RUN nixbox install" in content
        assert "${PATH}" in content
        assert "${user}" not in content

    def test_envrc(self) -> None:
        content = envrc_content()

        assert "watch_file devbox.json devbox.lock" in content
        assert "PATH_add .devbox/virtenv/.wrappers/bin" in content

    def test_extensions_follow_packages(self) -> None:
        packages = parse_references(["go@1.22", "python311", "nixpkgs#rustc", "cargo"])

        assert vscode_extensions(packages) == [
            "jnoortheen.nix-ide",
            "golang.go",
            "ms-python.python",
            "rust-lang.rust-analyzer",
        ]


class TestGenerate:
    """Tests for writing generated files."""

    def test_dockerfile_at_root(self, project_dir: Path) -> None:
        path = generate_dockerfile(project_dir)

        assert path == project_dir / "Dockerfile"
        assert path.read_text() == dockerfile_content()

    def test_existing_file_needs_force(self, project_dir: Path) -> None:
        (project_dir / "Dockerfile").write_text("FROM scratch\n")

        with pytest.raises(GenerateError, match="already exists, use --force"):
            generate_dockerfile(project_dir)
        assert (project_dir / "Dockerfile").read_text() == "FROM scratch\n"

        generate_dockerfile(project_dir, force=True)
        assert (project_dir / "Dockerfile").read_text() == dockerfile_content()

    def test_devcontainer(self, project_dir: Path) -> None:
        paths = generate_devcontainer(project_dir, parse_references(["go"]))

        assert [p.relative_to(project_dir).as_posix() for p in paths] == [
            ".devcontainer/Dockerfile",
            ".devcontainer/devcontainer.json",
        ]
        config = json.loads(paths[1].read_text())
        assert config["name"] == "project"
        assert config["remoteUser"] == "devbox"
        assert "golang.go" in config["customizations"]["vscode"]["extensions"]

    def test_envrc(self, project_dir: Path) -> None:
        path = generate_envrc(project_dir)

        assert path == project_dir / ".envrc"
        assert path.read_text() == envrc_content()
