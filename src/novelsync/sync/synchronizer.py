"""
Incremental search index synchronization.

The synchronizer pages through documents whose ``updated_at`` is newer than
the entity's cursor, oldest first, upserts each page into the search index
and only then advances the cursor to the page's newest ``updated_at``. A
failed index write therefore leaves the cursor where it was, and the next
run retries the same page.

Documents are compared at millisecond precision. Documents that share the
cursor's exact millisecond but did not fit on the page that moved the
cursor are not picked up until they change again.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from novelsync.documents.interface import DocumentStore
from novelsync.documents.models import CanonicalDocument, Chapter, Novel, from_millis, to_millis
from novelsync.documents.query import Filter, Query
from novelsync.exceptions import SearchIndexError
from novelsync.observability import Tracer, create_tracer
from novelsync.observability.attributes import (
    ATTR_CURSOR_POSITION,
    ATTR_DOCUMENT_COUNT,
    ATTR_DRY_RUN,
    ATTR_ENTITY_TYPE,
    ATTR_INDEX_NAME,
)
from novelsync.search.interface import CHAPTER_INDEX, NOVEL_INDEX, IndexDocument, SearchIndex
from novelsync.search.serializers import chapter_document, novel_document
from novelsync.sync.cursors import CursorRepository

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500


@dataclass(frozen=True)
class SyncTarget:
    """
    How one entity type is read from the store and written to the index.

    Attributes:
        entity_type: Cursor name ("novel", "chapter")
        model: Document model to read
        index: Search index to write
        serialize: Builds the index document
        filters: Extra filters applied to every page
    """

    entity_type: str
    model: type[CanonicalDocument]
    index: str
    serialize: Callable[[Any], IndexDocument]
    filters: tuple[Filter, ...] = ()


SYNC_TARGETS: dict[str, SyncTarget] = {
    "novel": SyncTarget("novel", Novel, NOVEL_INDEX, novel_document),
    "chapter": SyncTarget(
        "chapter",
        Chapter,
        CHAPTER_INDEX,
        chapter_document,
        (Filter.eq("is_published", True),),
    ),
}


@dataclass
class SyncReport:
    """
    Outcome of a ``sync_all`` run.

    Attributes:
        processed: Documents indexed, per entity type
        reset: Whether cursors were reset before syncing
        reset_reason: Why they were reset ("requested", "index empty")
        cursors: Cursor positions after the run
    """

    processed: dict[str, int] = field(default_factory=dict)
    reset: bool = False
    reset_reason: str | None = None
    cursors: dict[str, int] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def total(self) -> int:
        return sum(self.processed.values())

    @property
    def duration_seconds(self) -> float:
        end = self.completed_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": dict(self.processed),
            "reset": self.reset,
            "reset_reason": self.reset_reason,
            "cursors": dict(self.cursors),
            "duration_seconds": round(self.duration_seconds, 3),
        }


class IncrementalIndexSynchronizer:
    """
    Keeps the search index in step with the document store.

    Example:
        >>> synchronizer = IncrementalIndexSynchronizer(store, index, cursors)
        >>> report = await synchronizer.sync_all()
        >>> report.processed
        {'novel': 12, 'chapter': 340}

    In dry-run mode the cursors are read but never written; paging still
    advances through a local copy of the position.
    """

    def __init__(
        self,
        store: DocumentStore,
        index: SearchIndex,
        cursors: CursorRepository,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        dry_run: bool = False,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._store = store
        self._index = index
        self._cursors = cursors
        self._page_size = page_size
        self._dry_run = dry_run

    async def sync(self, entity_type: str) -> int:
        """
        Index every document of ``entity_type`` changed since its cursor.

        Returns:
            Number of documents indexed

        Raises:
            KeyError: If ``entity_type`` is not a synced entity
            SearchIndexError: If the index rejects a page; the cursor stays put
        """
        target = SYNC_TARGETS[entity_type]
        position = await self._cursors.get_cursor(entity_type)
        processed = 0
        with self._tracer.span(
            "novelsync.sync.sync",
            {
                ATTR_ENTITY_TYPE: entity_type,
                ATTR_INDEX_NAME: target.index,
                ATTR_CURSOR_POSITION: position,
                ATTR_DRY_RUN: self._dry_run,
            },
        ) as span:
            while True:
                page = await self._store.find(
                    target.model,
                    Query(
                        filters=[Filter.gt("updated_at", from_millis(position)), *target.filters],
                        order_by="updated_at",
                        order_direction="asc",
                        limit=self._page_size,
                    ),
                )
                if not page:
                    break
                await self._index.upsert(target.index, [target.serialize(d) for d in page])
                processed += len(page)
                position = max(position, max(to_millis(d.updated_at) for d in page))
                if not self._dry_run:
                    position = await self._cursors.advance_cursor(entity_type, position)
                logger.debug(
                    "Indexed %d %s documents, cursor at %d", len(page), entity_type, position
                )
                if len(page) < self._page_size:
                    break
            if span:
                span.set_attribute(ATTR_DOCUMENT_COUNT, processed)
                span.set_attribute(ATTR_CURSOR_POSITION, position)
        logger.info("Synced %d %s documents", processed, entity_type)
        return processed

    async def _index_is_empty(self) -> bool:
        try:
            counts = [await self._index.count(t.index) for t in SYNC_TARGETS.values()]
        except SearchIndexError as e:
            logger.warning("Could not count search indices, skipping auto-reset: %s", e)
            return False
        return any(count == 0 for count in counts)

    async def _reset(self, report: SyncReport, reason: str) -> None:
        report.reset = True
        report.reset_reason = reason
        if self._dry_run:
            logger.info("Dry run: cursors would be reset (%s)", reason)
            return
        await self._cursors.reset_all()
        logger.info("Cursors reset to 0 (%s)", reason)

    async def sync_all(self, reset: bool = False) -> SyncReport:
        """
        Sync novels and then chapters.

        The indices are created if missing. When either index holds no
        documents, all cursors are reset first so an index that was dropped
        or rebuilt gets repopulated in full.
        """
        report = SyncReport()
        with self._tracer.span("novelsync.sync.sync_all", {ATTR_DRY_RUN: self._dry_run}):
            for target in SYNC_TARGETS.values():
                await self._index.ensure_index(target.index)
            if reset:
                await self._reset(report, "requested")
            elif await self._index_is_empty():
                await self._reset(report, "index empty")
            for entity_type in SYNC_TARGETS:
                report.processed[entity_type] = await self.sync(entity_type)
            for cursor in await self._cursors.get_all_cursors():
                report.cursors[cursor.entity_type] = cursor.position
        report.completed_at = datetime.now(UTC)
        return report


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "IncrementalIndexSynchronizer",
    "SYNC_TARGETS",
    "SyncReport",
    "SyncTarget",
]
