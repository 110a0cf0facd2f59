"""Mutagen file-sync integration."""

from nixbox.mutagen.models import DEFAULT_SYNC_MODE, Session, SessionSpec
from nixbox.mutagen.wrapper import Mutagen, MutagenError, build_env, validate_spec

__all__ = [
    "DEFAULT_SYNC_MODE",
    "Mutagen",
    "MutagenError",
    "Session",
    "SessionSpec",
    "build_env",
    "validate_spec",
]
