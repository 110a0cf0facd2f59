"""Package search service client."""

from nixbox.search.client import SearchClient, SearchResult

__all__ = ["SearchClient", "SearchResult"]
