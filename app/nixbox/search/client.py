"""Package search client.

Resolves versioned package names (``hello@2.12``) to the nixpkgs commit
and attribute path that provide them, using the package search service.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nixbox.core.errors import ResolutionError
from nixbox.models.lockfile import LockedSystem, LockEntry

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_URL = "https://search.devbox.sh"
DEFAULT_TIMEOUT_S = 30.0
NIXPKGS_GITHUB = "github:NixOS/nixpkgs"


class SearchSystem(BaseModel):
    """Per-platform output reported by the search service."""

    model_config = ConfigDict(extra="ignore")

    store_path: str
    hash: str | None = None


class SearchResult(BaseModel):
    """A package version resolved by the search service.

    Attributes:
        name: Package name.
        version: Resolved version.
        commit_hash: nixpkgs commit providing this version.
        attr_path: Attribute path within nixpkgs.
        last_modified: When the commit was made.
        systems: Outputs per platform.
    """

    model_config = ConfigDict(extra="ignore")

    name: str
    version: str
    commit_hash: str
    attr_path: str
    last_modified: datetime | None = None
    systems: Annotated[dict[str, SearchSystem], Field(default_factory=dict)]

    @property
    def resolved(self) -> str:
        """Locked installable for this result."""
        return f"{NIXPKGS_GITHUB}/{self.commit_hash}#{self.attr_path}"

    def to_lock_entry(self) -> LockEntry:
        """Convert to a lockfile entry."""
        return LockEntry(
            resolved=self.resolved,
            version=self.version,
            source="search",
            last_modified=self.last_modified,
            systems={
                system: LockedSystem(store_path=out.store_path, hash=out.hash)
                for system, out in self.systems.items()
            },
        )


class SearchClient:
    """HTTP client for the package search service.

    Example:
        >>> with SearchClient() as client:
        ...     result = client.resolve("hello", "2.12.1")
    """

    def __init__(
        self,
        base_url: str = DEFAULT_SEARCH_URL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._http = httpx.Client(timeout=timeout_s, follow_redirects=True, transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> SearchClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def resolve(self, name: str, version: str) -> SearchResult | None:
        """Resolve a package name and version.

        Args:
            name: Canonical package name.
            version: Requested version, or ``latest``.

        Returns:
            SearchResult, or None if the service knows no such package.

        Raises:
            ResolutionError: If the request fails or the response is invalid.
        """
        url = f"{self.base_url}/v1/resolve"
        logger.debug("Resolving %s@%s via %s", name, version, url)
        try:
            resp = self._http.get(url, params={"name": name, "version": version})
        except httpx.HTTPError as e:
            raise ResolutionError(f"Search request for {name}@{version} failed: {e}") from e

        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise ResolutionError(
                f"Search service returned {resp.status_code} for {name}@{version}: "
                f"{resp.text.strip()}"
            )

        try:
            return SearchResult.model_validate_json(resp.content)
        except ValidationError as e:
            raise ResolutionError(f"Invalid search response for {name}@{version}: {e}") from e
