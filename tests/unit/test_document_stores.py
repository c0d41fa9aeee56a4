"""
Unit tests for the document models and stores.

Tests for:
- Timestamp normalization and storage names
- InMemoryDocumentStore unique keys, queries, updates and aggregates
- DryRunDocumentStore write suppression
- MongoDB filter translation
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from novelsync.documents.dry_run import DryRunDocumentStore
from novelsync.documents.in_memory import InMemoryDocumentStore
from novelsync.documents.interface import DocumentStore
from novelsync.documents.models import (
    Chapter,
    Favorite,
    Novel,
    NovelStatus,
    Tag,
    User,
    from_millis,
    to_millis,
    truncate_to_millis,
)
from novelsync.documents.mongodb import translate_filters
from novelsync.documents.query import Filter, Query
from novelsync.observability import ATTR_DB_COLLECTION
from novelsync.observability.tracer import MockTracer


def chapter(chapter_id: int, novel_id: int, sequence: int, **overrides) -> Chapter:
    values = {
        "chapter_id": chapter_id,
        "novel_id": novel_id,
        "novel_uuid": f"novel-{novel_id}",
        "title": f"Chapter {sequence}",
        "sequence": sequence,
        "word_count": 10 * sequence,
    }
    values.update(overrides)
    return Chapter(**values)


class TestModels:
    """Tests for canonical document models."""

    def test_timestamps_truncated_to_millis(self):
        novel = Novel(
            novel_id=1,
            title="T",
            slug="t",
            created_at=datetime(2024, 1, 1, 12, 0, 0, 123456, tzinfo=UTC),
        )

        assert novel.created_at.microsecond == 123000

    def test_naive_timestamps_are_utc(self):
        naive = datetime(2024, 1, 1, 12, 0)
        assert truncate_to_millis(naive).tzinfo is UTC

    def test_aware_timestamps_converted_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        value = truncate_to_millis(datetime(2024, 1, 1, 14, 0, tzinfo=plus_two))

        assert value == datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def test_millis_round_trip(self):
        value = datetime(2024, 5, 6, 7, 8, 9, 10_000, tzinfo=UTC)
        assert from_millis(to_millis(value)) == value

    def test_storage_names_are_camel_case(self):
        assert Novel.storage_name("chapters_count") == "chaptersCount"
        assert Chapter.storage_name("novel_uuid") == "novelUuid"
        assert Novel.storage_name("slug") == "slug"

    def test_unknown_storage_name(self):
        with pytest.raises(KeyError):
            Novel.storage_name("nope")

    def test_to_document_uses_aliases_and_enum_values(self):
        novel = Novel(novel_id=7, title="T", slug="t", status=NovelStatus.COMPLETED)
        document = novel.to_document()

        assert document["novelId"] == 7
        assert document["status"] == "completed"
        assert document["approvalStatus"] == "pending"

    def test_populate_from_stored_names(self):
        """Documents read back from storage validate by alias."""
        novel = Novel.model_validate({"novelId": 7, "title": "T", "slug": "t", "uuid": "u"})

        assert novel.novel_id == 7
        assert novel.legacy_id == 7

    def test_new_documents_get_distinct_uuids(self):
        first = Tag(tag_id=1, name="A", slug="a")
        second = Tag(tag_id=2, name="B", slug="b")

        assert first.uuid != second.uuid


class TestInMemoryDocumentStore:
    """Tests for the in-memory document store."""

    @pytest.fixture
    def store(self) -> InMemoryDocumentStore:
        return InMemoryDocumentStore()

    def test_implements_protocol(self, store):
        assert isinstance(store, DocumentStore)

    @pytest.mark.asyncio
    async def test_insert_enforces_id_key(self, store):
        assert await store.insert(Tag(tag_id=1, name="Magic", slug="magic"))
        assert not await store.insert(Tag(tag_id=1, name="Other", slug="other"))
        assert await store.count(Tag) == 1

    @pytest.mark.asyncio
    async def test_insert_enforces_secondary_unique_key(self, store):
        """Any declared unique key rejects the insert."""
        assert await store.insert(User(user_id=1, username="alice", email="a@example.com"))
        assert not await store.insert(User(user_id=2, username="alice", email="b@example.com"))

    @pytest.mark.asyncio
    async def test_compound_unique_key(self, store):
        favorite = Favorite(favorite_id=1, user_uuid="u1", novel_id=42, novel_uuid="n42")
        duplicate = Favorite(favorite_id=2, user_uuid="u1", novel_id=42, novel_uuid="n42")
        other_novel = Favorite(favorite_id=3, user_uuid="u1", novel_id=43, novel_uuid="n43")

        assert await store.insert(favorite)
        assert not await store.insert(duplicate)
        assert await store.insert(other_novel)

    @pytest.mark.asyncio
    async def test_insert_many_counts_only_new(self, store):
        await store.insert(chapter(1, 42, 1))

        written = await store.insert_many([chapter(1, 42, 1), chapter(2, 42, 2), chapter(3, 42, 3)])

        assert written == 2
        assert await store.count(Chapter) == 3

    @pytest.mark.asyncio
    async def test_find_with_filters_order_and_paging(self, store):
        await store.insert_many([chapter(i, 42, i) for i in range(1, 6)])
        await store.insert(chapter(10, 43, 1))

        page = await store.find(
            Chapter,
            Query(
                filters=[Filter.eq("novel_id", 42), Filter.gte("sequence", 2)],
                order_by="sequence",
                order_direction="desc",
                limit=2,
                offset=1,
            ),
        )

        assert [c.sequence for c in page] == [4, 3]

    @pytest.mark.asyncio
    async def test_find_returns_copies(self, store):
        await store.insert(Tag(tag_id=1, name="Magic", slug="magic"))

        found = await store.find_one(Tag, Filter.eq("tag_id", 1))
        found.name = "Changed"

        assert (await store.find_one(Tag, Filter.eq("tag_id", 1))).name == "Magic"

    @pytest.mark.asyncio
    async def test_distinct(self, store):
        await store.insert_many([chapter(1, 42, 1), chapter(2, 42, 2), chapter(3, 43, 1)])

        assert await store.distinct(Chapter, "novel_id") == [42, 43]
        assert await store.distinct(Chapter, "chapter_id", Filter.eq("novel_id", 42)) == [1, 2]

    @pytest.mark.asyncio
    async def test_update_revalidates(self, store):
        await store.insert(Novel(novel_id=1, title="T", slug="t"))
        moment = datetime(2024, 1, 1, 0, 0, 0, 999999, tzinfo=UTC)

        updated = await store.update(
            Novel, [Filter.eq("novel_id", 1)], {"chapters_count": 3, "updated_at": moment}
        )

        assert updated.chapters_count == 3
        assert updated.updated_at.microsecond == 999000
        assert (await store.find_one(Novel, Filter.eq("novel_id", 1))).chapters_count == 3

    @pytest.mark.asyncio
    async def test_update_missing_document(self, store):
        assert await store.update(Novel, [Filter.eq("novel_id", 1)], {"views": 1}) is None

    @pytest.mark.asyncio
    async def test_published_chapter_totals(self, store):
        await store.insert_many(
            [
                chapter(1, 42, 1, word_count=100),
                chapter(2, 42, 2, word_count=200),
                chapter(3, 42, 3, word_count=999, is_published=False),
                chapter(4, 43, 1, word_count=5),
            ]
        )

        totals = await store.published_chapter_totals([42, 99])

        assert set(totals) == {42}
        assert totals[42].chapters_count == 2
        assert totals[42].word_count == 300

    @pytest.mark.asyncio
    async def test_next_sequence_is_per_name(self, store):
        assert await store.next_sequence("favorites") == 1
        assert await store.next_sequence("favorites") == 2
        assert await store.next_sequence("other") == 1

    @pytest.mark.asyncio
    async def test_spans(self):
        tracer = MockTracer()
        store = InMemoryDocumentStore(tracer=tracer)

        await store.insert(Tag(tag_id=1, name="Magic", slug="magic"))
        await store.find(Tag)

        assert tracer.span_names == ["novelsync.documents.insert", "novelsync.documents.find"]
        assert tracer.spans[0][1][ATTR_DB_COLLECTION] == "novel-tags"


class TestDryRunDocumentStore:
    """Tests for the write-suppressing wrapper."""

    @pytest.fixture
    def wrapped(self) -> InMemoryDocumentStore:
        return InMemoryDocumentStore()

    @pytest.fixture
    def store(self, wrapped) -> DryRunDocumentStore:
        return DryRunDocumentStore(wrapped)

    @pytest.mark.asyncio
    async def test_inserts_are_suppressed(self, store, wrapped):
        assert await store.insert(Tag(tag_id=1, name="Magic", slug="magic"))
        assert await store.insert_many([chapter(1, 42, 1), chapter(2, 42, 2)]) == 2

        assert await wrapped.count(Tag) == 0
        assert await wrapped.count(Chapter) == 0
        assert store.suppressed_writes == {"novel-tags": 1, "chapters": 2}

    @pytest.mark.asyncio
    async def test_reads_go_through(self, store, wrapped):
        await wrapped.insert(Tag(tag_id=1, name="Magic", slug="magic"))

        assert await store.count(Tag) == 1
        assert (await store.find_one(Tag, Filter.eq("tag_id", 1))).name == "Magic"

    @pytest.mark.asyncio
    async def test_update_returns_preview_without_writing(self, store, wrapped):
        await wrapped.insert(Novel(novel_id=1, title="T", slug="t"))

        preview = await store.update(Novel, [Filter.eq("novel_id", 1)], {"views": 50})

        assert preview.views == 50
        assert (await wrapped.find_one(Novel, Filter.eq("novel_id", 1))).views == 0

    @pytest.mark.asyncio
    async def test_update_of_missing_document(self, store):
        assert await store.update(Novel, [Filter.eq("novel_id", 1)], {"views": 50}) is None
        assert store.suppressed_writes == {}

    @pytest.mark.asyncio
    async def test_sequences_are_local(self, store, wrapped):
        assert await store.next_sequence("favorites") == 1
        assert await store.next_sequence("favorites") == 2
        assert await wrapped.next_sequence("favorites") == 1

    @pytest.mark.asyncio
    async def test_ensure_indexes_is_skipped(self, store, wrapped):
        await store.ensure_indexes()
        assert wrapped.indexes_ensured is False


class TestTranslateFilters:
    """Tests for the MongoDB filter translation."""

    def test_equality_and_ranges(self):
        spec = translate_filters(
            Chapter,
            [Filter.eq("novel_id", 42), Filter.gt("sequence", 3), Filter.lte("sequence", 9)],
        )

        assert spec == {"novelId": 42, "sequence": {"$gt": 3, "$lte": 9}}

    def test_in_and_not_equal(self):
        spec = translate_filters(
            Novel, [Filter.in_("novel_id", [1, 2]), Filter.ne("status", NovelStatus.HIATUS)]
        )

        assert spec == {"novelId": {"$in": [1, 2]}, "status": {"$ne": "hiatus"}}

    def test_no_filters(self):
        assert translate_filters(Novel, []) == {}
