"""Console color theme.

The bundled palette in ``nixbox.data/theme.toml`` can be overridden key
by key from ~/.config/nixbox/theme.toml. A broken override is reported
and ignored; output never fails because of a theme.
"""

import logging
import re
import tomllib
from functools import cache
from importlib import resources
from pathlib import Path
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, ValidationError
from rich.theme import Theme

from nixbox.core.paths import get_user_theme_path

logger = logging.getLogger(__name__)

_HEX_COLOR = re.compile(r"#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})")


def _hex_color(value: str) -> str:
    color = value.strip()
    if not _HEX_COLOR.fullmatch(color):
        msg = f"expected a #RGB or #RRGGBB color, got {value!r}"
        raise ValueError(msg)
    return color


HexColor = Annotated[str, AfterValidator(_hex_color)]


class Palette(BaseModel):
    """Colors nixbox prints with."""

    model_config = ConfigDict(extra="forbid")

    text: HexColor = "#ffffff"
    muted: HexColor = "#b2bec3"
    header: HexColor = "#69B9A1"
    border: HexColor = "#29526d"
    success: HexColor = "#03b971"
    warning: HexColor = "#f5b332"
    error: HexColor = "#f53263"
    info: HexColor = "#0ec1c8"
    step: HexColor = "#0e8ac8"

    def styles(self) -> dict[str, str]:
        """Rich style names used by the CLI, mapped to style definitions."""
        return {
            "text": self.text,
            "muted": self.muted,
            "header": self.header,
            "bold_header": f"bold {self.header}",
            "border": self.border,
            "success": self.success,
            "warning": self.warning,
            "error": f"bold {self.error}",
            "info": self.info,
            "step": self.step,
            "package.name": f"bold {self.text}",
            "package.version": self.muted,
        }


def read_colors(path: Path) -> dict[str, str]:
    """Read the ``[colors]`` table of a theme file.

    Returns:
        String values of the table. Empty if the file is missing or unreadable.
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning("Ignoring theme file %s: %s", path, e)
        return {}

    colors = data.get("colors", {})
    if not isinstance(colors, dict):
        logger.warning("Ignoring theme file %s: [colors] is not a table", path)
        return {}
    return {key: value for key, value in colors.items() if isinstance(value, str)}


def load_palette(user_path: Path | None = None) -> Palette:
    """Merge the bundled palette with user overrides.

    Args:
        user_path: Override file. Defaults to the XDG config location.
    """
    bundled = resources.files("nixbox.data").joinpath("theme.toml")
    colors = read_colors(Path(str(bundled)))
    colors.update(read_colors(user_path or get_user_theme_path()))
    try:
        return Palette.model_validate(colors)
    except ValidationError as e:
        logger.warning("Invalid theme colors, using defaults: %s", e)
        return Palette()


@cache
def get_theme() -> Theme:
    """Rich theme for the shared consoles, loaded once per process."""
    return Theme(load_palette().styles())
