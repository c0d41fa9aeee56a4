"""
Document store interface.

The primary store holds the canonical documents. Migrators talk to it only
through this protocol, which keeps the stage logic independent from motor
and lets tests run against the in-memory implementation.

Duplicate-key conflicts are part of the contract: ``insert`` reports them by
returning ``False`` and ``insert_many`` by leaving them out of its count.
Neither raises, because a duplicate means a previous run already wrote the
record.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar, runtime_checkable

from novelsync.documents.models import CanonicalDocument
from novelsync.documents.query import Filter, Query

TDocument = TypeVar("TDocument", bound=CanonicalDocument)


@dataclass(frozen=True)
class ChapterTotals:
    """
    Aggregate over the published chapters of one novel.

    Attributes:
        novel_id: Dense id of the novel
        chapters_count: Number of published chapters
        word_count: Sum of the published chapters' word counts
    """

    novel_id: int
    chapters_count: int
    word_count: int


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for the primary document store."""

    async def ping(self) -> None:
        """Raise StoreConnectionError if the store cannot be reached."""
        ...

    async def ensure_indexes(self) -> None:
        """Create the unique and secondary indexes declared by the models."""
        ...

    async def find_one(
        self, model: type[TDocument], *filters: Filter
    ) -> TDocument | None: ...

    async def find(
        self, model: type[TDocument], query: Query | None = None
    ) -> list[TDocument]: ...

    async def count(self, model: type[CanonicalDocument], *filters: Filter) -> int: ...

    async def distinct(
        self, model: type[CanonicalDocument], field: str, *filters: Filter
    ) -> list[Any]:
        """Distinct values of ``field`` among matching documents."""
        ...

    async def insert(self, document: CanonicalDocument) -> bool:
        """
        Insert one document.

        Returns:
            True if written, False if a unique key already existed
        """
        ...

    async def insert_many(self, documents: Sequence[CanonicalDocument]) -> int:
        """
        Insert documents, skipping duplicates.

        Returns:
            Number of documents actually written
        """
        ...

    async def update(
        self,
        model: type[TDocument],
        filters: Sequence[Filter],
        changes: Mapping[str, Any],
    ) -> TDocument | None:
        """
        Set fields on the first matching document.

        Returns:
            The updated document, or None if nothing matched
        """
        ...

    async def published_chapter_totals(
        self, novel_ids: Sequence[int]
    ) -> dict[int, ChapterTotals]:
        """
        Count and word-sum of published chapters per novel.

        Novels without published chapters are absent from the result.
        """
        ...

    async def next_sequence(self, name: str) -> int:
        """Allocate the next value of a named monotonic counter (starting at 1)."""
        ...

    async def close(self) -> None: ...


__all__ = ["ChapterTotals", "DocumentStore", "TDocument"]
