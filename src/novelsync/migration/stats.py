"""
Stats reconciliation.

Novel aggregates (chapter count and word count) can drift from the chapters
actually stored, e.g. after a run that failed between writing chapters and
updating the novel. Reconciliation recomputes them from the published
chapters and corrects the novels that disagree.
"""

from __future__ import annotations

import logging

from redis.exceptions import RedisError

from novelsync.cache import NovelCache
from novelsync.config import MigrationConfig
from novelsync.documents.interface import DocumentStore
from novelsync.documents.models import Novel, utc_now
from novelsync.documents.query import Filter, Query
from novelsync.exceptions import SearchIndexError
from novelsync.migration.base import (
    MigrationResult,
    ProgressCallback,
    RecordOutcome,
    run_paginated,
)
from novelsync.observability import Tracer, create_tracer
from novelsync.observability.attributes import (
    ATTR_ENTITY_TYPE,
    ATTR_LEGACY_ID,
    ATTR_RECORDS_MIGRATED,
)
from novelsync.search.interface import NOVEL_INDEX, SearchIndex
from novelsync.search.serializers import novel_document

logger = logging.getLogger(__name__)


class StatsReconciler:
    """
    Recomputes novel aggregates from stored chapters.

    A corrected novel gets a fresh ``updated_at`` so the next incremental
    index sync picks it up, is re-pushed to the search index when one is
    configured, and has its cache entry dropped.

    Example:
        >>> reconciler = StatsReconciler(store, index=index, cache=cache)
        >>> result = await reconciler.reconcile()
        >>> result.details["corrected"]
        3
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        index: SearchIndex | None = None,
        cache: NovelCache | None = None,
        config: MigrationConfig | None = None,
        progress_callback: ProgressCallback | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._store = store
        self._index = index
        self._cache = cache
        self._config = config or MigrationConfig()
        self._progress_callback = progress_callback

    async def reconcile(self) -> MigrationResult:
        result = MigrationResult(stage="stats")
        expected = await self._store.count(Novel)
        logger.info("Reconciling stats of %d novels", expected)

        async def fetch(limit: int, offset: int) -> list[Novel]:
            return await self._store.find(
                Novel, Query(order_by="novel_id", limit=limit, offset=offset)
            )

        with self._tracer.span("novelsync.stats.reconcile", {ATTR_ENTITY_TYPE: "novel"}) as span:
            await run_paginated(
                result,
                expected=expected,
                fetch=fetch,
                worker=self.reconcile_novel,
                batch_size=self._config.batch_size,
                concurrency=self._config.concurrency,
                entity_type="novel",
                legacy_id=lambda novel: novel.novel_id,
                progress_callback=self._progress_callback,
                tracer=self._tracer,
            )
            if span:
                span.set_attribute(ATTR_RECORDS_MIGRATED, result.details["corrected"])
        result.details.setdefault("corrected", 0)
        logger.debug("%d novels corrected", result.details["corrected"])
        return result.complete()

    async def reconcile_novel(self, novel: Novel) -> RecordOutcome:
        totals = (await self._store.published_chapter_totals([novel.novel_id])).get(novel.novel_id)
        chapters_count = totals.chapters_count if totals else 0
        word_count = totals.word_count if totals else 0
        if novel.chapters_count == chapters_count and novel.word_count == word_count:
            return RecordOutcome.migrated(novel.novel_id)

        with self._tracer.span(
            "novelsync.stats.correct", {ATTR_ENTITY_TYPE: "novel", ATTR_LEGACY_ID: novel.novel_id}
        ):
            logger.debug(
                "Novel %d: chapters %d -> %d, words %d -> %d",
                novel.novel_id,
                novel.chapters_count,
                chapters_count,
                novel.word_count,
                word_count,
            )
            changes = {
                "chapters_count": chapters_count,
                "word_count": word_count,
                "updated_at": utc_now(),
            }
            updated = await self._store.update(
                Novel, [Filter.eq("novel_id", novel.novel_id)], changes
            )
            corrected = updated or novel.model_copy(update=changes)
            warnings = await self._propagate(corrected)
        return RecordOutcome.migrated(novel.novel_id, warnings=warnings, details={"corrected": 1})

    async def _propagate(self, novel: Novel) -> list[str]:
        warnings: list[str] = []
        if self._index is not None and self._config.search_indexing:
            try:
                await self._index.upsert(NOVEL_INDEX, [novel_document(novel)])
            except SearchIndexError as e:
                logger.warning("Novel %d corrected but not re-indexed: %s", novel.novel_id, e)
                warnings.append(f"Novel {novel.novel_id}: re-index failed: {e}")
        if self._cache is not None:
            try:
                await self._cache.invalidate(novel.slug)
            except (RedisError, OSError) as e:
                logger.warning(
                    "Novel %d corrected but cache not invalidated: %s", novel.novel_id, e
                )
                warnings.append(f"Novel {novel.novel_id}: cache invalidation failed: {e}")
        return warnings


__all__ = ["StatsReconciler"]
