"""
Write-suppressing document store wrapper for dry runs.

Wraps a real store: reads go through unchanged, writes are logged and
reported as successful without touching the wrapped store. Sequence values
come from a local counter so allocated ids look plausible in the report
without consuming the real counters.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from typing import Any

from novelsync.documents.interface import ChapterTotals, DocumentStore, TDocument
from novelsync.documents.models import CanonicalDocument
from novelsync.documents.query import Filter, Query

logger = logging.getLogger(__name__)


class DryRunDocumentStore:
    """
    DocumentStore decorator that suppresses all writes.

    Attributes:
        suppressed_writes: Number of write calls swallowed, per collection

    Example:
        >>> store = DryRunDocumentStore(MongoDocumentStore(client, "novels"))
        >>> await store.insert(novel)  # nothing is written
        True
    """

    def __init__(self, wrapped: DocumentStore) -> None:
        self._wrapped = wrapped
        self._sequences: dict[str, int] = defaultdict(int)
        self.suppressed_writes: dict[str, int] = defaultdict(int)

    @property
    def wrapped(self) -> DocumentStore:
        return self._wrapped

    def _suppress(self, collection: str, count: int = 1) -> None:
        self.suppressed_writes[collection] += count
        logger.debug("Dry run: suppressed %d write(s) to %s", count, collection)

    async def ping(self) -> None:
        await self._wrapped.ping()

    async def ensure_indexes(self) -> None:
        logger.info("Dry run: skipping index creation")

    async def find_one(self, model: type[TDocument], *filters: Filter) -> TDocument | None:
        return await self._wrapped.find_one(model, *filters)

    async def find(self, model: type[TDocument], query: Query | None = None) -> list[TDocument]:
        return await self._wrapped.find(model, query)

    async def count(self, model: type[CanonicalDocument], *filters: Filter) -> int:
        return await self._wrapped.count(model, *filters)

    async def distinct(
        self, model: type[CanonicalDocument], field: str, *filters: Filter
    ) -> list[Any]:
        return await self._wrapped.distinct(model, field, *filters)

    async def insert(self, document: CanonicalDocument) -> bool:
        self._suppress(document.collection_name())
        return True

    async def insert_many(self, documents: Sequence[CanonicalDocument]) -> int:
        if documents:
            self._suppress(documents[0].collection_name(), len(documents))
        return len(documents)

    async def update(
        self,
        model: type[TDocument],
        filters: Sequence[Filter],
        changes: Mapping[str, Any],
    ) -> TDocument | None:
        current = await self._wrapped.find_one(model, *filters)
        if current is None:
            return None
        self._suppress(model.collection_name())
        return current.model_copy(update=dict(changes))

    async def published_chapter_totals(
        self, novel_ids: Sequence[int]
    ) -> dict[int, ChapterTotals]:
        return await self._wrapped.published_chapter_totals(novel_ids)

    async def next_sequence(self, name: str) -> int:
        self._sequences[name] += 1
        return self._sequences[name]

    async def close(self) -> None:
        await self._wrapped.close()


__all__ = ["DryRunDocumentStore"]
