"""
In-memory search index for testing and development.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from typing import Any

from novelsync.exceptions import SearchIndexError
from novelsync.search.interface import IndexDocument


class InMemorySearchIndex:
    """
    In-memory implementation of the SearchIndex protocol.

    Setting ``fail_on`` to a set of index names makes ``upsert`` raise for
    those indices, which lets tests exercise index outages.

    Example:
        >>> index = InMemorySearchIndex()
        >>> await index.upsert("novels", [IndexDocument(id="1", body={})])
        1
        >>> await index.count("novels")
        1
    """

    def __init__(self) -> None:
        self.indices: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.fail_on: set[str] = set()
        self.upsert_calls: list[tuple[str, int]] = []

    async def ping(self) -> None:
        return None

    async def ensure_index(self, index: str) -> None:
        self.indices.setdefault(index, {})

    async def count(self, index: str) -> int:
        return len(self.indices.get(index, {}))

    async def upsert(self, index: str, documents: Sequence[IndexDocument]) -> int:
        if index in self.fail_on:
            raise SearchIndexError(index, "index unavailable")
        if not documents:
            return 0
        self.upsert_calls.append((index, len(documents)))
        for document in documents:
            self.indices[index][document.id] = dict(document.body)
        return len(documents)

    def get(self, index: str, document_id: str) -> dict[str, Any] | None:
        return self.indices.get(index, {}).get(document_id)

    def clear(self, index: str | None = None) -> None:
        if index is None:
            self.indices.clear()
        else:
            self.indices.pop(index, None)

    async def close(self) -> None:
        return None


__all__ = ["InMemorySearchIndex"]
