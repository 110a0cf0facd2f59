"""Generators for container and shell-integration files."""

from nixbox.generate.files import (
    GenerateError,
    devcontainer_content,
    dockerfile_content,
    envrc_content,
    generate_devcontainer,
    generate_dockerfile,
    generate_envrc,
    vscode_extensions,
)

__all__ = [
    "GenerateError",
    "devcontainer_content",
    "dockerfile_content",
    "envrc_content",
    "generate_devcontainer",
    "generate_dockerfile",
    "generate_envrc",
    "vscode_extensions",
]
