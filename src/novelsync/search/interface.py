"""
Search index interface.

One logical index per entity type, supporting upsert-by-id and a document
count. The index is eventually consistent with the primary store; the
incremental synchronizer is what keeps it caught up.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

NOVEL_INDEX = "novels"
CHAPTER_INDEX = "chapters"


@dataclass(frozen=True)
class IndexDocument:
    """
    A document ready to be written to the search index.

    Attributes:
        id: Document id within the index (upsert key)
        body: JSON-serializable document body
    """

    id: str
    body: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class SearchIndex(Protocol):
    """Protocol for the secondary search index."""

    async def ping(self) -> None:
        """Raise StoreConnectionError if the cluster cannot be reached."""
        ...

    async def ensure_index(self, index: str) -> None:
        """Create the index if it does not exist."""
        ...

    async def count(self, index: str) -> int:
        """Number of documents in the index; 0 if the index does not exist."""
        ...

    async def upsert(self, index: str, documents: Sequence[IndexDocument]) -> int:
        """
        Index (create or replace) documents by id.

        Returns:
            Number of documents written

        Raises:
            SearchIndexError: If the request or any document write fails
        """
        ...

    async def close(self) -> None: ...


__all__ = ["CHAPTER_INDEX", "NOVEL_INDEX", "IndexDocument", "SearchIndex"]
