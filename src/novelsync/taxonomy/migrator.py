"""
Taxonomy migration: legacy tags and genres into canonical documents.

Tags are copied one-to-one. Genres are consolidated: every legacy genre whose
label normalizes to the same canonical label joins one group, and the
group's lowest legacy id becomes the canonical ``genre_id``. The number of
distinct genres is capped; once the cap is reached, further new labels fold
into the fallback genre.

The result carries the ``TaxonomyMapping`` the content migrator resolves
novel labels against. Taxonomy has to be persisted before content runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from novelsync.documents.interface import DocumentStore
from novelsync.documents.models import CanonicalDocument, Genre, Tag
from novelsync.documents.query import Filter
from novelsync.exceptions import FatalMigrationError
from novelsync.identity import TaxonomyMapping
from novelsync.legacy.interface import LegacySource
from novelsync.legacy.models import LegacyGenre, LegacyTag
from novelsync.migration.base import MigrationResult, RecordOutcome
from novelsync.observability import Tracer, create_tracer
from novelsync.observability.attributes import ATTR_ENTITY_TYPE, ATTR_RECORDS_MIGRATED
from novelsync.taxonomy.normalizer import (
    DEFAULT_GENRE,
    GENRE_CEILING,
    TaxonomyNormalizer,
    genre_normalizer,
    slugify,
    tag_normalizer,
)

logger = logging.getLogger(__name__)


@dataclass
class TaxonomyMigrationResult:
    """
    Outcome of the taxonomy stage.

    Attributes:
        tags: Result for the tag collection
        genres: Result for the genre collection
        mapping: Label to id mapping for the content migrator
    """

    tags: MigrationResult
    genres: MigrationResult
    mapping: TaxonomyMapping

    @property
    def success(self) -> bool:
        return self.tags.success and self.genres.success

    def to_dict(self) -> dict[str, Any]:
        return {
            "tags": self.tags.to_dict(),
            "genres": self.genres.to_dict(),
            "genre_count": self.mapping.genre_count,
        }


class TaxonomyMigrator:
    """
    Migrates tags and genres and builds the taxonomy mapping.

    Example:
        >>> migrator = TaxonomyMigrator(source, store)
        >>> result = await migrator.migrate()
        >>> result.mapping.resolve_genre("Sci-fi")
        12
    """

    def __init__(
        self,
        source: LegacySource,
        store: DocumentStore,
        *,
        genre_ceiling: int = GENRE_CEILING,
        genres: TaxonomyNormalizer = genre_normalizer,
        tags: TaxonomyNormalizer = tag_normalizer,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._source = source
        self._store = store
        self._genre_ceiling = genre_ceiling
        self._genres = genres
        self._tags = tags

    async def migrate(self) -> TaxonomyMigrationResult:
        mapping = await TaxonomyMapping.from_store(self._store, self._genres)
        tags = await self.migrate_tags(mapping)
        genres = await self.migrate_genres(mapping)
        return TaxonomyMigrationResult(tags=tags, genres=genres, mapping=mapping)

    async def _unique_slug(self, model: type[CanonicalDocument], base: str) -> str:
        candidate = base
        counter = 1
        while await self._store.find_one(model, Filter.eq("slug", candidate)) is not None:
            candidate = f"{base}-{counter}"
            counter += 1
        return candidate

    async def migrate_tags(self, mapping: TaxonomyMapping) -> MigrationResult:
        result = MigrationResult(stage="tags")
        with self._tracer.span(
            "novelsync.taxonomy.migrate_tags", {ATTR_ENTITY_TYPE: "tag"}
        ) as span:
            legacy_tags = await self._source.fetch_tags()
            logger.info("Migrating %d tags", len(legacy_tags))
            for legacy in legacy_tags:
                try:
                    result.record(await self._migrate_tag(legacy, mapping))
                except FatalMigrationError:
                    raise
                except Exception as e:
                    logger.error("Failed to migrate tag %d: %s", legacy.id, e)
                    result.record(
                        RecordOutcome.failed(legacy.id, f"Failed to migrate tag {legacy.id}: {e}")
                    )
            if span:
                span.set_attribute(ATTR_RECORDS_MIGRATED, result.migrated)
        return result.complete()

    async def _migrate_tag(self, legacy: LegacyTag, mapping: TaxonomyMapping) -> RecordOutcome:
        labels = self._tags.normalize([legacy.name])
        if not labels:
            return RecordOutcome.skipped(legacy.id, warning=f"Tag {legacy.id} has an empty label")
        label = labels[0]

        existing = await self._store.find_one(Tag, Filter.eq("tag_id", legacy.id))
        if existing is None:
            existing = await self._store.find_one(Tag, Filter.eq("name", label))
        if existing is not None:
            mapping.add_tag(existing.name, existing.tag_id)
            mapping.add_tag(legacy.name, existing.tag_id)
            return RecordOutcome.existing(legacy.id)

        slug = await self._unique_slug(Tag, slugify(label, fallback=f"tag-{legacy.id}"))
        tag = Tag(tag_id=legacy.id, name=label, slug=slug)
        if not await self._store.insert(tag):
            return RecordOutcome.existing(legacy.id)
        mapping.add_tag(label, legacy.id)
        mapping.add_tag(legacy.name, legacy.id)
        return RecordOutcome.migrated(legacy.id)

    def _group_genres(
        self, legacy_genres: list[LegacyGenre], result: MigrationResult
    ) -> dict[str, list[LegacyGenre]]:
        groups: dict[str, list[LegacyGenre]] = {}
        for legacy in sorted(legacy_genres, key=lambda g: g.id):
            canonical = self._genres.map_label(legacy.name).strip()
            if not canonical:
                result.record(
                    RecordOutcome.skipped(legacy.id, warning=f"Genre {legacy.id} has an empty label")
                )
                continue
            groups.setdefault(canonical, []).append(legacy)
        return groups

    async def migrate_genres(self, mapping: TaxonomyMapping) -> MigrationResult:
        """
        Consolidate legacy genres.

        The ceiling counts genres already in the store. A slot is kept free
        for the fallback genre until it exists, so folding never pushes the
        count past the ceiling.
        """
        result = MigrationResult(stage="genres")
        with self._tracer.span(
            "novelsync.taxonomy.migrate_genres", {ATTR_ENTITY_TYPE: "genre"}
        ) as span:
            legacy_genres = await self._source.fetch_genres()
            groups = self._group_genres(legacy_genres, result)
            logger.info(
                "Migrating %d genres as %d canonical genres", len(legacy_genres), len(groups)
            )
            for canonical, members in groups.items():
                try:
                    outcomes = await self._migrate_genre_group(canonical, members, mapping)
                except FatalMigrationError:
                    raise
                except Exception as e:
                    logger.error("Failed to migrate genre %r: %s", canonical, e)
                    outcomes = [
                        RecordOutcome.failed(
                            m.id, f"Failed to migrate genre {m.id} ({canonical}): {e}"
                        )
                        for m in members
                    ]
                result.record_all(outcomes)
            result.details["canonical"] = mapping.genre_count
            if span:
                span.set_attribute(ATTR_RECORDS_MIGRATED, result.migrated)
        return result.complete()

    def _at_ceiling(self, mapping: TaxonomyMapping) -> bool:
        reserved = 0 if mapping.genre_by_name(DEFAULT_GENRE) is not None else 1
        return mapping.genre_count + reserved >= self._genre_ceiling

    async def _migrate_genre_group(
        self,
        canonical: str,
        members: list[LegacyGenre],
        mapping: TaxonomyMapping,
    ) -> list[RecordOutcome]:
        canonical_id = members[0].id
        existing = await self._resolve_existing(canonical, members, mapping)
        if existing is not None:
            self._map_labels(mapping, members, existing)
            return [RecordOutcome.existing(m.id) for m in members]

        warnings: list[str] = []
        if canonical != DEFAULT_GENRE and self._at_ceiling(mapping):
            labels = ", ".join(repr(m.name) for m in members)
            warnings.append(
                f"Genre ceiling of {self._genre_ceiling} reached; {labels} folded into {DEFAULT_GENRE}"
            )
            logger.warning(warnings[-1])
            canonical = DEFAULT_GENRE
            fallback = mapping.genre_by_name(DEFAULT_GENRE)
            if fallback is not None:
                self._map_labels(mapping, members, fallback)
                await self._record_folded(fallback, members)
                return [
                    RecordOutcome.migrated(
                        m.id, warnings=warnings if i == 0 else (), details={"folded": 1}
                    )
                    for i, m in enumerate(members)
                ]

        slug = await self._unique_slug(Genre, slugify(canonical, fallback=f"genre-{canonical_id}"))
        genre = Genre(genre_id=canonical_id, name=canonical, slug=slug)
        inserted = await self._store.insert(genre)
        if inserted:
            mapping.add_genre(canonical, slug, canonical_id)
        else:
            stored = await self._store.find_one(Genre, Filter.eq("genre_id", canonical_id))
            if stored is None:
                raise RuntimeError(f"genre {canonical_id} rejected as duplicate but not found")
            mapping.add_genre(stored.name, stored.slug, stored.genre_id)
            canonical_id = stored.genre_id
        self._map_labels(mapping, members, canonical_id)
        if warnings:
            await self._record_folded(canonical_id, members)

        outcomes: list[RecordOutcome] = []
        for index, member in enumerate(members):
            details = {"consolidated": 1} if index > 0 else {}
            if warnings:
                details["folded"] = 1
            outcomes.append(
                RecordOutcome.migrated(
                    member.id, warnings=warnings if index == 0 else (), details=details
                )
            )
        return outcomes

    async def _resolve_existing(
        self, canonical: str, members: list[LegacyGenre], mapping: TaxonomyMapping
    ) -> int | None:
        genre_id = mapping.genre_by_name(canonical)
        if genre_id is not None:
            return genre_id
        stored = await self._store.find_one(
            Genre, Filter.in_("genre_id", [m.id for m in members])
        )
        if stored is not None:
            mapping.add_genre(stored.name, stored.slug, stored.genre_id)
            return stored.genre_id
        return None

    async def _record_folded(self, genre_id: int, members: list[LegacyGenre]) -> None:
        """Store the raw labels folded into a genre as its aliases."""
        genre = await self._store.find_one(Genre, Filter.eq("genre_id", genre_id))
        if genre is None:
            return
        aliases = list(genre.aliases)
        for member in members:
            if member.name not in aliases:
                aliases.append(member.name)
        if aliases != genre.aliases:
            await self._store.update(
                Genre, [Filter.eq("genre_id", genre_id)], {"aliases": aliases}
            )

    @staticmethod
    def _map_labels(mapping: TaxonomyMapping, members: list[LegacyGenre], genre_id: int) -> None:
        for member in members:
            mapping.add_genre_label(member.name, genre_id)


__all__ = ["TaxonomyMigrationResult", "TaxonomyMigrator"]
