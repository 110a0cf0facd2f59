"""Package store adapters.

This module exports the profile store interface and its Nix implementation.
"""

from nixbox.store.base import ProfileStore
from nixbox.store.nix import NixStore, StoreUnavailableError, detect_system

__all__ = ["NixStore", "ProfileStore", "StoreUnavailableError", "detect_system"]
