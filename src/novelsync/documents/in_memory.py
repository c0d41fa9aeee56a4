"""
In-memory document store for testing and development.

Enforces the unique keys declared by each document model, so idempotency
behaves the same as against MongoDB. Documents are copied on the way in and
on the way out; callers never share state with the store.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Mapping, Sequence
from typing import Any

from novelsync.documents.interface import ChapterTotals, TDocument
from novelsync.documents.models import CanonicalDocument, Chapter
from novelsync.documents.query import Filter, Query
from novelsync.observability import Tracer, create_tracer
from novelsync.observability.attributes import ATTR_DB_COLLECTION, ATTR_DB_OPERATION


class InMemoryDocumentStore:
    """
    In-memory implementation of the DocumentStore protocol.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.insert(Tag(tag_id=1, name="Magic", slug="magic"))
        True
        >>> await store.insert(Tag(tag_id=1, name="Magic", slug="magic"))
        False
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = False,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._collections: dict[str, list[CanonicalDocument]] = defaultdict(list)
        self._sequences: dict[str, int] = defaultdict(int)
        self._lock = asyncio.Lock()
        self.indexes_ensured = False

    def _span(self, operation: str, model: type[CanonicalDocument]) -> Any:
        return self._tracer.span(
            f"novelsync.documents.{operation}",
            {ATTR_DB_OPERATION: operation, ATTR_DB_COLLECTION: model.collection_name()},
        )

    @staticmethod
    def _matches(document: CanonicalDocument, filters: Sequence[Filter]) -> bool:
        return all(f.matches(getattr(document, f.field)) for f in filters)

    @staticmethod
    def _key(document: CanonicalDocument, fields: tuple[str, ...]) -> tuple[Any, ...]:
        return tuple(getattr(document, name) for name in fields)

    def _conflicts(self, document: CanonicalDocument) -> bool:
        existing = self._collections[document.collection_name()]
        for fields in document.__unique_keys__:
            key = self._key(document, fields)
            if any(self._key(other, fields) == key for other in existing):
                return True
        return False

    async def ping(self) -> None:
        return None

    async def ensure_indexes(self) -> None:
        self.indexes_ensured = True

    async def find_one(self, model: type[TDocument], *filters: Filter) -> TDocument | None:
        with self._span("find_one", model):
            for document in self._collections[model.collection_name()]:
                if self._matches(document, filters):
                    return document.model_copy(deep=True)  # type: ignore[return-value]
            return None

    async def find(self, model: type[TDocument], query: Query | None = None) -> list[TDocument]:
        query = query or Query()
        with self._span("find", model):
            results = [
                d for d in self._collections[model.collection_name()] if self._matches(d, query.filters)
            ]
            if query.order_by:
                order_by = query.order_by
                results.sort(
                    key=lambda d: (getattr(d, order_by) is None, getattr(d, order_by)),
                    reverse=query.order_direction == "desc",
                )
            end = None if query.limit is None else query.offset + query.limit
            return [d.model_copy(deep=True) for d in results[query.offset : end]]  # type: ignore[misc]

    async def count(self, model: type[CanonicalDocument], *filters: Filter) -> int:
        with self._span("count", model):
            return sum(1 for d in self._collections[model.collection_name()] if self._matches(d, filters))

    async def distinct(
        self, model: type[CanonicalDocument], field: str, *filters: Filter
    ) -> list[Any]:
        with self._span("distinct", model):
            values: list[Any] = []
            for document in self._collections[model.collection_name()]:
                if self._matches(document, filters):
                    value = getattr(document, field)
                    if value not in values:
                        values.append(value)
            return values

    async def insert(self, document: CanonicalDocument) -> bool:
        with self._span("insert", type(document)):
            async with self._lock:
                if self._conflicts(document):
                    return False
                self._collections[document.collection_name()].append(
                    document.model_copy(deep=True)
                )
                return True

    async def insert_many(self, documents: Sequence[CanonicalDocument]) -> int:
        inserted = 0
        for document in documents:
            if await self.insert(document):
                inserted += 1
        return inserted

    async def update(
        self,
        model: type[TDocument],
        filters: Sequence[Filter],
        changes: Mapping[str, Any],
    ) -> TDocument | None:
        with self._span("update", model):
            async with self._lock:
                documents = self._collections[model.collection_name()]
                for position, document in enumerate(documents):
                    if self._matches(document, filters):
                        # re-validate so timestamps and nested models are normalized
                        updated = model.model_validate({**document.model_dump(), **changes})
                        documents[position] = updated
                        return updated.model_copy(deep=True)
                return None

    async def published_chapter_totals(
        self, novel_ids: Sequence[int]
    ) -> dict[int, ChapterTotals]:
        wanted = set(novel_ids)
        counts: dict[int, list[int]] = {}
        with self._span("aggregate", Chapter):
            for chapter in self._collections[Chapter.collection_name()]:
                if chapter.novel_id in wanted and chapter.is_published:  # type: ignore[attr-defined]
                    totals = counts.setdefault(chapter.novel_id, [0, 0])  # type: ignore[attr-defined]
                    totals[0] += 1
                    totals[1] += chapter.word_count  # type: ignore[attr-defined]
        return {
            novel_id: ChapterTotals(novel_id=novel_id, chapters_count=c, word_count=w)
            for novel_id, (c, w) in counts.items()
        }

    async def next_sequence(self, name: str) -> int:
        async with self._lock:
            self._sequences[name] += 1
            return self._sequences[name]

    async def close(self) -> None:
        return None

    def all(self, model: type[TDocument]) -> list[TDocument]:
        """Snapshot of every stored document of ``model`` (test helper)."""
        return [d.model_copy(deep=True) for d in self._collections[model.collection_name()]]  # type: ignore[misc]

    def clear(self, model: type[CanonicalDocument] | None = None) -> None:
        """Drop one collection, or everything including sequences (test helper)."""
        if model is not None:
            self._collections.pop(model.collection_name(), None)
            return
        self._collections.clear()
        self._sequences.clear()


__all__ = ["InMemoryDocumentStore"]
