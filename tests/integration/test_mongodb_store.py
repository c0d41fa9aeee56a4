"""
Integration tests for the MongoDB document store.

Each test gets its own database with the unique indexes in place, so
duplicate handling is enforced by the server.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from novelsync.documents.models import Chapter, Favorite, Novel, ReadingListItem
from novelsync.documents.query import Filter, Query

pytestmark = [pytest.mark.integration, pytest.mark.mongodb]


def novel(novel_id: int, **overrides) -> Novel:
    return Novel(
        novel_id=novel_id, title=f"Novel {novel_id}", slug=f"novel-{novel_id}", **overrides
    )


def chapter(chapter_id: int, novel_id: int, sequence: int, **overrides) -> Chapter:
    return Chapter(
        chapter_id=chapter_id,
        novel_id=novel_id,
        novel_uuid=f"novel-{novel_id}-uuid",
        title=f"Chapter {sequence}",
        sequence=sequence,
        **overrides,
    )


class TestMongoDocumentStore:
    @pytest.mark.asyncio
    async def test_ping(self, mongo_store):
        await mongo_store.ping()

    @pytest.mark.asyncio
    async def test_duplicate_insert_is_ignored(self, mongo_store):
        assert await mongo_store.insert(novel(1))
        assert not await mongo_store.insert(novel(1, title="Again"))

        stored = await mongo_store.find_one(Novel, Filter.eq("novel_id", 1))

        assert stored.title == "Novel 1"

    @pytest.mark.asyncio
    async def test_insert_many_skips_duplicates(self, mongo_store):
        await mongo_store.insert(chapter(1, 1, 1))

        inserted = await mongo_store.insert_many(
            [chapter(1, 1, 1), chapter(2, 1, 2), chapter(3, 1, 3)]
        )

        assert inserted == 2
        assert await mongo_store.count(Chapter) == 3

    @pytest.mark.asyncio
    async def test_compound_unique_key(self, mongo_store):
        await mongo_store.insert(
            Favorite(favorite_id=1, user_uuid="u1", novel_id=1, novel_uuid="n1")
        )

        duplicate = Favorite(favorite_id=2, user_uuid="u1", novel_id=1, novel_uuid="n1")

        assert not await mongo_store.insert(duplicate)

    @pytest.mark.asyncio
    async def test_novel_listed_once_per_reading_list(self, mongo_store):
        def item(item_id: int) -> ReadingListItem:
            return ReadingListItem(
                item_id=item_id,
                list_uuid="list-7",
                novel_id=42,
                novel_slug="star-road",
                novel_uuid="novel-42-uuid",
            )

        assert await mongo_store.insert(item(70000))
        assert not await mongo_store.insert(item(70001))

    @pytest.mark.asyncio
    async def test_find_ordered_and_paged(self, mongo_store):
        await mongo_store.insert_many([novel(i) for i in (3, 1, 2, 4)])

        page = await mongo_store.find(
            Novel,
            Query(
                filters=[Filter.gt("novel_id", 1)],
                order_by="novel_id",
                order_direction="desc",
                limit=2,
            ),
        )

        assert [n.novel_id for n in page] == [4, 3]

    @pytest.mark.asyncio
    async def test_datetimes_are_timezone_aware(self, mongo_store):
        updated = datetime(2023, 3, 1, 12, 0, tzinfo=UTC)
        await mongo_store.insert(novel(1, updated_at=updated))

        stored = await mongo_store.find_one(Novel, Filter.eq("novel_id", 1))

        assert stored.updated_at == updated

    @pytest.mark.asyncio
    async def test_update(self, mongo_store):
        await mongo_store.insert(novel(1))

        updated = await mongo_store.update(
            Novel, [Filter.eq("novel_id", 1)], {"chapters_count": 3, "word_count": 450}
        )

        assert (updated.chapters_count, updated.word_count) == (3, 450)
        assert await mongo_store.update(Novel, [Filter.eq("novel_id", 2)], {"views": 1}) is None

    @pytest.mark.asyncio
    async def test_distinct(self, mongo_store):
        await mongo_store.insert_many([chapter(1, 1, 1), chapter(2, 1, 2), chapter(3, 2, 1)])

        assert sorted(await mongo_store.distinct(Chapter, "novel_id")) == [1, 2]

    @pytest.mark.asyncio
    async def test_published_chapter_totals(self, mongo_store):
        await mongo_store.insert_many(
            [
                chapter(1, 1, 1, word_count=100),
                chapter(2, 1, 2, word_count=50),
                chapter(3, 1, 3, word_count=70, is_published=False),
                chapter(4, 2, 1, word_count=10),
            ]
        )

        totals = await mongo_store.published_chapter_totals([1, 3])

        assert list(totals) == [1]
        assert (totals[1].chapters_count, totals[1].word_count) == (2, 150)

    @pytest.mark.asyncio
    async def test_next_sequence(self, mongo_store):
        assert await mongo_store.next_sequence("favorites") == 1
        assert await mongo_store.next_sequence("favorites") == 2
        assert await mongo_store.next_sequence("comments") == 1
