"""
Unit tests for stats reconciliation.
"""

from __future__ import annotations

import pytest

from novelsync.config import MigrationConfig
from novelsync.documents.models import Chapter, Novel
from novelsync.documents.query import Filter
from novelsync.migration.stats import StatsReconciler
from novelsync.observability.tracer import MockTracer
from novelsync.search.interface import NOVEL_INDEX
from tests.fixtures import BASE_TIME


async def seed(
    store, novel_id: int, chapters: list[int], *, chapters_count: int, word_count: int
) -> None:
    await store.insert(
        Novel(
            novel_id=novel_id,
            title=f"Novel {novel_id}",
            slug=f"novel-{novel_id}",
            chapters_count=chapters_count,
            word_count=word_count,
            updated_at=BASE_TIME,
        )
    )
    for sequence, words in enumerate(chapters, start=1):
        await store.insert(
            Chapter(
                chapter_id=novel_id * 100 + sequence,
                novel_id=novel_id,
                novel_uuid=f"novel-{novel_id}-uuid",
                title=f"Chapter {sequence}",
                sequence=sequence,
                word_count=words,
            )
        )


async def stored(store, novel_id: int) -> Novel:
    return await store.find_one(Novel, Filter.eq("novel_id", novel_id))


class TestReconcile:
    """Tests for recomputing chapter and word counts."""

    @pytest.mark.asyncio
    async def test_corrects_drifted_novels_only(self, store, index, cache):
        await seed(store, 1, [100, 200], chapters_count=2, word_count=300)
        await seed(store, 2, [100, 200, 50], chapters_count=2, word_count=300)
        reconciler = StatsReconciler(store, index=index, cache=cache, enable_tracing=False)

        result = await reconciler.reconcile()

        drifted = await stored(store, 2)
        assert result.total == 2
        assert result.details["corrected"] == 1
        assert drifted.chapters_count == 3
        assert drifted.word_count == 350
        assert drifted.updated_at > BASE_TIME
        assert (await stored(store, 1)).updated_at == BASE_TIME

    @pytest.mark.asyncio
    async def test_unpublished_chapters_do_not_count(self, store):
        await seed(store, 1, [100], chapters_count=1, word_count=100)
        await store.insert(
            Chapter(
                chapter_id=199,
                novel_id=1,
                novel_uuid="novel-1-uuid",
                title="Draft",
                sequence=2,
                word_count=500,
                is_published=False,
            )
        )

        result = await StatsReconciler(store, enable_tracing=False).reconcile()

        assert result.details["corrected"] == 0
        assert (await stored(store, 1)).word_count == 100

    @pytest.mark.asyncio
    async def test_novel_without_chapters_is_zeroed(self, store):
        await seed(store, 1, [], chapters_count=4, word_count=900)

        await StatsReconciler(store, enable_tracing=False).reconcile()

        novel = await stored(store, 1)
        assert (novel.chapters_count, novel.word_count) == (0, 0)

    @pytest.mark.asyncio
    async def test_corrected_novel_is_reindexed_and_uncached(self, store, index, cache):
        await seed(store, 2, [100, 200, 50], chapters_count=2, word_count=300)
        reconciler = StatsReconciler(store, index=index, cache=cache, enable_tracing=False)

        await reconciler.reconcile()

        assert index.get(NOVEL_INDEX, "2")["wordCount"] == 350
        assert cache.invalidated == ["novel:novel-2"]

    @pytest.mark.asyncio
    async def test_search_indexing_disabled(self, store, index):
        await seed(store, 2, [100], chapters_count=0, word_count=0)
        config = MigrationConfig(search_indexing=False)

        await StatsReconciler(store, index=index, config=config, enable_tracing=False).reconcile()

        assert index.upsert_calls == []

    @pytest.mark.asyncio
    async def test_index_failure_is_a_warning(self, store, index):
        await seed(store, 2, [100], chapters_count=0, word_count=0)
        index.fail_on.add(NOVEL_INDEX)

        result = await StatsReconciler(store, index=index, enable_tracing=False).reconcile()

        assert result.failed == 0
        assert result.details["corrected"] == 1
        assert any("re-index failed" in w for w in result.warnings)
        assert (await stored(store, 2)).chapters_count == 1

    @pytest.mark.asyncio
    async def test_cache_failure_is_a_warning(self, store, cache):
        await seed(store, 2, [100], chapters_count=0, word_count=0)
        cache.fail = True

        result = await StatsReconciler(store, cache=cache, enable_tracing=False).reconcile()

        assert result.failed == 0
        assert any("cache invalidation failed" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_empty_store(self, store):
        result = await StatsReconciler(store, enable_tracing=False).reconcile()

        assert result.total == 0
        assert result.details["corrected"] == 0
        assert result.success

    @pytest.mark.asyncio
    async def test_spans(self, store):
        await seed(store, 2, [100], chapters_count=0, word_count=0)
        tracer = MockTracer()

        await StatsReconciler(store, tracer=tracer).reconcile()

        assert "novelsync.stats.reconcile" in tracer.span_names
        assert "novelsync.stats.correct" in tracer.span_names
