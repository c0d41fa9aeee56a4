"""
Unit tests for the content migrator.

Tests for:
- Word counting and novel/chapter transformation
- The insert path: novel, chapters, aggregates and chapter pointers
- The update path: only missing chapters are added
- Search indexing side effects and index failures
- max_novels and per-novel failure isolation
"""

from __future__ import annotations

import pytest

from novelsync.config import MigrationConfig
from novelsync.documents.models import Chapter, Genre, Novel, Tag
from novelsync.identity import TaxonomyMapping
from novelsync.legacy.in_memory import InMemoryLegacySource
from novelsync.migration.content import ContentMigrator, count_words, transform_novel
from novelsync.search.in_memory import InMemorySearchIndex
from novelsync.search.interface import CHAPTER_INDEX, NOVEL_INDEX
from tests.fixtures import at, make_chapter, make_novel


@pytest.fixture
def mapping() -> TaxonomyMapping:
    mapping = TaxonomyMapping()
    mapping.add_tag("Magic", 1)
    mapping.add_genre("Science Fiction", "science-fiction", 3)
    mapping.add_genre("Gaming", "gaming", 5)
    return mapping


@pytest.fixture
def novel_source() -> InMemoryLegacySource:
    return InMemoryLegacySource(
        novels=[make_novel(42, genres=("Sci-fi", "Game"), tags=("Magic",), rating=4.25)],
        chapters=[
            make_chapter(421, 42, 1, word_count=100),
            make_chapter(422, 42, 2, word_count=200),
            make_chapter(423, 42, 3, word_count=150),
        ],
    )


class TestCountWords:
    """Tests for word counting."""

    @pytest.mark.parametrize(
        ("content", "expected"),
        [
            (None, 0),
            ("", 0),
            ("   ", 0),
            ("one", 1),
            ("  It was a dark\n and stormy night ", 7),
            ("tabs\tand\nnewlines", 3),
        ],
    )
    def test_count_words(self, content, expected):
        assert count_words(content) == expected


class TestTransformNovel:
    """Tests for building the canonical novel."""

    def test_resolves_taxonomy(self, mapping):
        novel, warnings = transform_novel(
            make_novel(42, genres=("Sci-fi", "Game"), tags=("Magic",)), mapping
        )

        assert novel.genre_ids == [3, 5]
        assert novel.tag_ids == [1]
        assert warnings == []

    def test_warns_about_unresolved_labels(self, mapping):
        novel, warnings = transform_novel(
            make_novel(42, genres=("Cyberpunk",), tags=("Swords",)), mapping
        )

        assert novel.genre_ids == []
        assert novel.tag_ids == []
        assert len(warnings) == 2

    def test_field_mapping(self, mapping):
        legacy = make_novel(
            42,
            status="Completed",
            rating=4.25,
            bookmark_count=9,
            views=321,
            thumbnail=None,
            cover="https://img.example.com/cover.jpg",
            source=(2, 5),
        )

        novel, _ = transform_novel(legacy, mapping)

        assert novel.novel_id == 42
        assert novel.status == "completed"
        assert novel.approval_status == "approved"
        assert novel.upvote_count == 42
        assert novel.favorites_count == 9
        assert novel.views == 321
        assert novel.cover_img == "https://img.example.com/cover.jpg"
        assert novel.source == [2, 5]
        assert novel.created_at == legacy.created_at
        assert novel.updated_at == legacy.updated_at

    def test_unknown_status_defaults_to_ongoing(self, mapping):
        novel, _ = transform_novel(make_novel(1, status="Dropped"), mapping)
        assert novel.status == "ongoing"


class TestInsertPath:
    """Tests for novels that are not in the store yet."""

    @pytest.mark.asyncio
    async def test_novel_with_three_chapters(self, novel_source, store, mapping):
        migrator = ContentMigrator(novel_source, store, mapping, enable_tracing=False)

        result = await migrator.migrate()

        (novel,) = store.all(Novel)
        chapters = sorted(store.all(Chapter), key=lambda c: c.sequence)
        assert result.migrated == 1
        assert result.details["created"] == 1
        assert result.details["chapters"] == 3
        assert novel.genre_ids == [3, 5]
        assert novel.chapters_count == 3
        assert novel.word_count == 450
        assert [c.sequence for c in chapters] == [1, 2, 3]
        assert [c.chapter_id for c in chapters] == [421, 422, 423]
        assert all(c.novel_uuid == novel.uuid for c in chapters)
        assert novel.first_chapter.uuid == chapters[0].uuid
        assert novel.latest_chapter.uuid == chapters[-1].uuid
        assert novel.latest_chapter.sequence == 3

    @pytest.mark.asyncio
    async def test_fills_identifier_map(self, novel_source, store, mapping):
        migrator = ContentMigrator(novel_source, store, mapping, enable_tracing=False)

        await migrator.migrate()

        (novel,) = store.all(Novel)
        assert migrator.novels.get(42) == novel.uuid
        assert migrator.novels.slug(42) == "novel-42"

    @pytest.mark.asyncio
    async def test_chapter_order_puts_unnumbered_last(self, store, mapping):
        source = InMemoryLegacySource(
            novels=[make_novel(1)],
            chapters=[
                make_chapter(13, 1, None),
                make_chapter(12, 1, 2),
                make_chapter(11, 1, 1),
            ],
        )

        await ContentMigrator(source, store, mapping, enable_tracing=False).migrate()

        chapters = sorted(store.all(Chapter), key=lambda c: c.sequence)
        assert [c.chapter_id for c in chapters] == [11, 12, 13]

    @pytest.mark.asyncio
    async def test_novel_without_chapters(self, store, mapping):
        source = InMemoryLegacySource(novels=[make_novel(1)])

        await ContentMigrator(source, store, mapping, enable_tracing=False).migrate()

        (novel,) = store.all(Novel)
        assert novel.chapters_count == 0
        assert novel.first_chapter is None
        assert novel.latest_chapter is None

    @pytest.mark.asyncio
    async def test_skips_unpublished_and_deleted(self, store, mapping):
        source = InMemoryLegacySource(
            novels=[make_novel(1), make_novel(2, published=False), make_novel(3, deleted_at=at(9))]
        )

        result = await ContentMigrator(source, store, mapping, enable_tracing=False).migrate()

        assert [n.novel_id for n in store.all(Novel)] == [1]
        assert result.total == 1

    @pytest.mark.asyncio
    async def test_indexes_novel_and_chapters(self, novel_source, store, mapping):
        index = InMemorySearchIndex()

        await ContentMigrator(
            novel_source, store, mapping, index=index, enable_tracing=False
        ).migrate()

        assert await index.count(NOVEL_INDEX) == 1
        assert await index.count(CHAPTER_INDEX) == 3
        assert index.get(NOVEL_INDEX, "42")["wordCount"] == 450

    @pytest.mark.asyncio
    async def test_index_failure_is_a_warning(self, novel_source, store, mapping):
        index = InMemorySearchIndex()
        index.fail_on = {NOVEL_INDEX}

        result = await ContentMigrator(
            novel_source, store, mapping, index=index, enable_tracing=False
        ).migrate()

        assert result.migrated == 1
        assert result.failed == 0
        assert any("search indexing failed" in w for w in result.warnings)
        assert len(store.all(Novel)) == 1

    @pytest.mark.asyncio
    async def test_indexing_disabled(self, novel_source, store, mapping):
        index = InMemorySearchIndex()
        config = MigrationConfig(search_indexing=False)

        await ContentMigrator(
            novel_source, store, mapping, index=index, config=config, enable_tracing=False
        ).migrate()

        assert index.upsert_calls == []


class TestUpdatePath:
    """Tests for novels an earlier run already wrote."""

    @pytest.mark.asyncio
    async def test_adds_only_new_chapters(self, novel_source, store, mapping):
        await ContentMigrator(novel_source, store, mapping, enable_tracing=False).migrate()
        (before,) = store.all(Novel)
        novel_source.chapters.append(make_chapter(424, 42, 4, word_count=50))

        result = await ContentMigrator(novel_source, store, mapping, enable_tracing=False).migrate()

        (after,) = store.all(Novel)
        chapters = sorted(store.all(Chapter), key=lambda c: c.sequence)
        assert result.details["updated"] == 1
        assert result.details["chapters"] == 1
        assert len(chapters) == 4
        assert chapters[-1].chapter_id == 424
        assert chapters[-1].sequence == 4
        assert after.uuid == before.uuid
        assert after.chapters_count == 4
        assert after.word_count == 500
        assert after.latest_chapter.uuid == chapters[-1].uuid
        assert after.updated_at >= before.updated_at

    @pytest.mark.asyncio
    async def test_rerun_without_changes(self, novel_source, store, mapping):
        migrator = ContentMigrator(novel_source, store, mapping, enable_tracing=False)
        await migrator.migrate()

        result = await migrator.migrate()

        assert result.details["chapters"] == 0
        assert len(store.all(Chapter)) == 3
        assert store.all(Novel)[0].word_count == 450

    @pytest.mark.asyncio
    async def test_heals_novel_with_missing_chapters(self, novel_source, store, mapping):
        """A novel written without its chapters gets them on the next run."""
        novel, _ = transform_novel(novel_source.novels[0], mapping)
        await store.insert(novel)

        await ContentMigrator(novel_source, store, mapping, enable_tracing=False).migrate()

        (healed,) = store.all(Novel)
        assert healed.uuid == novel.uuid
        assert healed.chapters_count == 3
        assert healed.word_count == 450
        assert {c.novel_uuid for c in store.all(Chapter)} == {novel.uuid}

    @pytest.mark.asyncio
    async def test_updates_views(self, novel_source, store, mapping):
        await ContentMigrator(novel_source, store, mapping, enable_tracing=False).migrate()
        novel_source.novels[0] = make_novel(42, views=999)

        await ContentMigrator(novel_source, store, mapping, enable_tracing=False).migrate()

        assert store.all(Novel)[0].views == 999


class TestMigrate:
    """Tests for stage-level behaviour."""

    @pytest.mark.asyncio
    async def test_max_novels_caps_the_run(self, store, mapping):
        source = InMemoryLegacySource(novels=[make_novel(i) for i in range(1, 6)])
        config = MigrationConfig(max_novels=2, batch_size=1)

        result = await ContentMigrator(
            source, store, mapping, config=config, enable_tracing=False
        ).migrate()

        assert result.total == 2
        assert [n.novel_id for n in store.all(Novel)] == [1, 2]

    @pytest.mark.asyncio
    async def test_max_novels_zero_skips(self, store, mapping):
        source = InMemoryLegacySource(novels=[make_novel(1)])

        result = await ContentMigrator(
            source, store, mapping, config=MigrationConfig(max_novels=0), enable_tracing=False
        ).migrate()

        assert result.total == 0
        assert store.all(Novel) == []
        assert result.warnings

    @pytest.mark.asyncio
    async def test_failing_novel_does_not_stop_the_stage(self, store, mapping):
        class BrokenChapters(InMemoryLegacySource):
            async def fetch_chapters(self, novel_id):
                if novel_id == 2:
                    raise RuntimeError("chapters table locked")
                return await super().fetch_chapters(novel_id)

        source = BrokenChapters(novels=[make_novel(1), make_novel(2), make_novel(3)])

        result = await ContentMigrator(source, store, mapping, enable_tracing=False).migrate()

        assert result.migrated == 2
        assert result.failed == 1
        assert "chapters table locked" in result.errors[0]
        assert [n.novel_id for n in store.all(Novel)] == [1, 3]

    @pytest.mark.asyncio
    async def test_progress_events(self, store, mapping):
        source = InMemoryLegacySource(novels=[make_novel(i) for i in range(1, 6)])
        events = []

        await ContentMigrator(
            source,
            store,
            mapping,
            config=MigrationConfig(batch_size=2),
            progress_callback=events.append,
            enable_tracing=False,
        ).migrate()

        assert [e.processed for e in events] == [2, 4, 5]
        assert events[-1].progress_percent == 100.0

    @pytest.mark.asyncio
    async def test_taxonomy_written_first_resolves(self, store):
        """Labels resolve against taxonomy hydrated from the store."""
        await store.insert(Tag(tag_id=1, name="Magic", slug="magic"))
        await store.insert(Genre(genre_id=3, name="Science Fiction", slug="science-fiction"))
        mapping = await TaxonomyMapping.from_store(store)
        source = InMemoryLegacySource(novels=[make_novel(1, genres=("Sci-fi Space",))])

        await ContentMigrator(source, store, mapping, enable_tracing=False).migrate()

        assert store.all(Novel)[0].genre_ids == [3]
