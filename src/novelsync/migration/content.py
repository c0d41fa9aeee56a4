"""
Content migration: novels and their chapters.

A novel that is not in the document store yet is created along with all of
its chapters. A novel that is already there goes through the update path:
only chapters the store does not know are added, then the aggregates and
chapter pointers are recomputed from what the store holds. Either way the
novel and its new chapters are pushed to the search index.

Nothing is rolled back. A novel that fails half way is healed by the next
run, which finds it and takes the update path.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from novelsync.config import MigrationConfig
from novelsync.documents.interface import DocumentStore
from novelsync.documents.models import (
    ApprovalStatus,
    Chapter,
    ChapterPointer,
    Novel,
    NovelStatus,
    new_uuid,
    utc_now,
)
from novelsync.documents.query import Filter, Query
from novelsync.exceptions import RecordMigrationError, SearchIndexError
from novelsync.identity import IdentifierMap, TaxonomyMapping
from novelsync.legacy.interface import LegacySource
from novelsync.legacy.models import LegacyChapter, LegacyNovel
from novelsync.migration.base import (
    MigrationResult,
    ProgressCallback,
    RecordOutcome,
    legacy_timestamps,
    run_paginated,
)
from novelsync.observability import Tracer, create_tracer
from novelsync.observability.attributes import ATTR_ENTITY_TYPE, ATTR_LEGACY_ID
from novelsync.search.interface import CHAPTER_INDEX, NOVEL_INDEX, SearchIndex
from novelsync.search.serializers import chapter_document, novel_document

logger = logging.getLogger(__name__)

STATUS_MAP: dict[str, NovelStatus] = {
    "Ongoing": NovelStatus.ONGOING,
    "Completed": NovelStatus.COMPLETED,
    "Hiatus": NovelStatus.HIATUS,
}


def count_words(content: str | None) -> int:
    """
    Number of whitespace-separated tokens in the trimmed content.

    Example:
        >>> count_words("  It was a dark\\n and stormy night ")
        7
    """
    if not content:
        return 0
    return len(content.strip().split())


def transform_novel(legacy: LegacyNovel, mapping: TaxonomyMapping) -> tuple[Novel, list[str]]:
    """
    Build the canonical novel for a legacy row.

    Returns:
        Tuple of (novel, warnings about labels that could not be resolved)
    """
    warnings: list[str] = []
    tag_ids, missing_tags = mapping.resolve_tags(legacy.tags)
    if missing_tags:
        warnings.append(f"Novel {legacy.id}: unmapped tags dropped: {', '.join(missing_tags)}")
    genre_ids = mapping.resolve_genres(legacy.genres)
    if not genre_ids:
        warnings.append(f"Novel {legacy.id}: no genre resolved from {list(legacy.genres)}")

    novel = Novel(
        novel_id=legacy.id,
        uuid=new_uuid(),
        owner_user_id=legacy.author_id or 1,
        title=legacy.name,
        slug=legacy.slug,
        description=legacy.description or "",
        tag_ids=tag_ids,
        genre_ids=genre_ids,
        status=STATUS_MAP.get(legacy.status, NovelStatus.ONGOING),
        approval_status=ApprovalStatus.APPROVED if legacy.published else ApprovalStatus.PENDING,
        cover_img=legacy.thumbnail or legacy.cover or "",
        views=legacy.views or 0,
        favorites_count=legacy.bookmark_count or 0,
        upvote_count=math.floor((legacy.rating or 0) * 10),
        source=list(legacy.source),
        **legacy_timestamps(legacy.created_at, legacy.updated_at),
    )
    return novel, warnings


def transform_chapter(
    legacy: LegacyChapter, novel_id: int, novel_uuid: str, sequence: int
) -> Chapter:
    return Chapter(
        chapter_id=legacy.id,
        novel_id=novel_id,
        novel_uuid=novel_uuid,
        title=legacy.chapter_title or f"Chapter {sequence}",
        sequence=sequence,
        word_count=count_words(legacy.content),
        content=legacy.content or "",
        is_published=True,
        published_at=legacy.created_at,
        **legacy_timestamps(legacy.created_at, legacy.updated_at),
    )


def chapter_pointer(chapter: Chapter | None) -> ChapterPointer | None:
    if chapter is None:
        return None
    return ChapterPointer(uuid=chapter.uuid, title=chapter.title, sequence=chapter.sequence)


class ContentMigrator:
    """
    Migrates novels and chapters.

    The novel identifier map passed in (or created here) is filled as novels
    are migrated, so later stages can resolve novel references without
    another scan.

    Example:
        >>> migrator = ContentMigrator(source, store, taxonomy.mapping, index=index)
        >>> result = await migrator.migrate()
        >>> print(result.summary())
    """

    def __init__(
        self,
        source: LegacySource,
        store: DocumentStore,
        mapping: TaxonomyMapping,
        *,
        index: SearchIndex | None = None,
        novels: IdentifierMap | None = None,
        config: MigrationConfig | None = None,
        progress_callback: ProgressCallback | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._source = source
        self._store = store
        self._mapping = mapping
        self._index = index
        self._novels = novels if novels is not None else IdentifierMap("novel")
        self._config = config or MigrationConfig()
        self._progress_callback = progress_callback

    @property
    def novels(self) -> IdentifierMap:
        return self._novels

    async def migrate(self) -> MigrationResult:
        result = MigrationResult(stage="novels")
        config = self._config
        if config.max_novels == 0:
            result.warn("max_novels is 0; content migration skipped")
            logger.warning("max_novels is 0; skipping content migration")
            return result.complete()

        available = await self._source.count_novels()
        expected = available if config.max_novels is None else min(available, config.max_novels)
        logger.info("Migrating %d of %d novels", expected, available)

        await run_paginated(
            result,
            expected=expected,
            fetch=self._source.fetch_novels,
            worker=self.migrate_novel,
            batch_size=config.batch_size,
            concurrency=config.concurrency,
            entity_type="novel",
            legacy_id=lambda novel: novel.id,
            progress_callback=self._progress_callback,
            tracer=self._tracer,
        )
        return result.complete()

    async def migrate_novel(self, legacy: LegacyNovel) -> RecordOutcome:
        """Migrate one novel, choosing the insert or update path."""
        with self._tracer.span(
            "novelsync.content.migrate_novel",
            {ATTR_ENTITY_TYPE: "novel", ATTR_LEGACY_ID: legacy.id},
        ):
            existing = await self._store.find_one(Novel, Filter.eq("novel_id", legacy.id))
            if existing is not None:
                return await self._update_existing(legacy, existing)
            return await self._insert_new(legacy)

    async def _insert_new(self, legacy: LegacyNovel) -> RecordOutcome:
        novel, warnings = transform_novel(legacy, self._mapping)
        legacy_chapters = await self._source.fetch_chapters(legacy.id)
        chapters = [
            transform_chapter(c, novel.novel_id, novel.uuid, sequence)
            for sequence, c in enumerate(legacy_chapters, start=1)
        ]
        published = sorted((c for c in chapters if c.is_published), key=lambda c: c.sequence)
        novel = novel.model_copy(
            update={
                "chapters_count": len(published),
                "word_count": sum(c.word_count for c in published),
                "first_chapter": chapter_pointer(published[0] if published else None),
                "latest_chapter": chapter_pointer(published[-1] if published else None),
            }
        )

        if not await self._store.insert(novel):
            # written concurrently or by an interrupted run
            existing = await self._store.find_one(Novel, Filter.eq("novel_id", legacy.id))
            if existing is None:
                raise RecordMigrationError("novel", legacy.id, "novel rejected as duplicate")
            return await self._update_existing(legacy, existing)

        written = await self._store.insert_many(chapters) if chapters else 0
        self._novels.add(novel.novel_id, novel.uuid, slug=novel.slug)
        warnings.extend(await self._push_to_index(novel, published))
        logger.debug("Novel %d created with %d chapters", legacy.id, written)
        return RecordOutcome.migrated(
            legacy.id, warnings=warnings, details={"created": 1, "chapters": written}
        )

    async def _update_existing(self, legacy: LegacyNovel, existing: Novel) -> RecordOutcome:
        legacy_chapters = await self._source.fetch_chapters(legacy.id)
        known = set(
            await self._store.distinct(Chapter, "chapter_id", Filter.eq("novel_id", legacy.id))
        )
        missing = [c for c in legacy_chapters if c.id not in known]

        new_chapters: list[Chapter] = []
        if missing:
            last = await self._store.find(
                Chapter,
                Query(
                    filters=[Filter.eq("novel_id", legacy.id)],
                    order_by="sequence",
                    order_direction="desc",
                    limit=1,
                ),
            )
            next_sequence = (last[0].sequence if last else 0) + 1
            new_chapters = [
                transform_chapter(c, legacy.id, existing.uuid, next_sequence + offset)
                for offset, c in enumerate(missing)
            ]
            await self._store.insert_many(new_chapters)
            logger.debug("Novel %d: %d new chapters", legacy.id, len(new_chapters))

        totals = (await self._store.published_chapter_totals([legacy.id])).get(legacy.id)
        first, latest = await self._chapter_pointers(legacy.id)
        changes: dict[str, Any] = {
            "chapters_count": totals.chapters_count if totals else 0,
            "word_count": totals.word_count if totals else 0,
            "views": legacy.views or existing.views,
            "first_chapter": first,
            "latest_chapter": latest,
            "updated_at": utc_now(),
        }
        updated = await self._store.update(Novel, [Filter.eq("novel_id", legacy.id)], changes)
        novel = updated or existing.model_copy(update=changes)

        self._novels.add(existing.novel_id, existing.uuid, slug=existing.slug)
        warnings = await self._push_to_index(novel, [c for c in new_chapters if c.is_published])
        return RecordOutcome.migrated(
            legacy.id,
            warnings=warnings,
            details={"updated": 1, "chapters": len(new_chapters)},
        )

    async def _chapter_pointers(
        self, novel_id: int
    ) -> tuple[ChapterPointer | None, ChapterPointer | None]:
        filters = [Filter.eq("novel_id", novel_id), Filter.eq("is_published", True)]
        first = await self._store.find(
            Chapter, Query(filters=filters, order_by="sequence", order_direction="asc", limit=1)
        )
        latest = await self._store.find(
            Chapter, Query(filters=filters, order_by="sequence", order_direction="desc", limit=1)
        )
        return (
            chapter_pointer(first[0] if first else None),
            chapter_pointer(latest[0] if latest else None),
        )

    async def _push_to_index(self, novel: Novel, chapters: list[Chapter]) -> list[str]:
        if self._index is None or not self._config.search_indexing:
            return []
        try:
            await self._index.upsert(NOVEL_INDEX, [novel_document(novel)])
            if chapters:
                await self._index.upsert(CHAPTER_INDEX, [chapter_document(c) for c in chapters])
        except SearchIndexError as e:
            logger.warning("Novel %d migrated but not indexed: %s", novel.novel_id, e)
            return [f"Novel {novel.novel_id}: search indexing failed: {e}"]
        return []


__all__ = [
    "ContentMigrator",
    "STATUS_MAP",
    "chapter_pointer",
    "count_words",
    "transform_chapter",
    "transform_novel",
]
