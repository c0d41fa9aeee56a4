"""
Identifier maps and the taxonomy mapping.

Later stages reference earlier entities by their opaque ``uuid``, but the
legacy data only carries integer ids. An ``IdentifierMap`` translates one to
the other. It is built once per run by scanning the target collection and
then only grows while the run adds records; an existing entry is never
remapped, which keeps references stable across re-runs.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from novelsync.documents.interface import DocumentStore
from novelsync.documents.models import CanonicalDocument, Genre, Tag
from novelsync.documents.query import Query
from novelsync.exceptions import IdentifierConflictError
from novelsync.taxonomy.normalizer import TaxonomyNormalizer, genre_normalizer, slugify

logger = logging.getLogger(__name__)

SCAN_PAGE_SIZE = 1000


@dataclass(frozen=True)
class IdentifierEntry:
    """
    One mapped entity.

    Attributes:
        legacy_id: Integer id carried over from the legacy store
        uuid: Opaque identifier in the target store
        slug: URL slug, for entities that have one
    """

    legacy_id: int
    uuid: str
    slug: str | None = None


class IdentifierMap:
    """
    Append-only map from legacy integer ids to opaque identifiers.

    Example:
        >>> novels = await IdentifierMap.build(store, Novel)
        >>> novels.add(42, "3f0c...", slug="the-wandering-sword")
        >>> novels.get(42)
        '3f0c...'
    """

    def __init__(self, entity_type: str) -> None:
        self.entity_type = entity_type
        self._entries: dict[int, IdentifierEntry] = {}

    @classmethod
    async def build(
        cls,
        store: DocumentStore,
        model: type[CanonicalDocument],
        *,
        page_size: int = SCAN_PAGE_SIZE,
    ) -> IdentifierMap:
        """Scan ``model``'s collection and map every stored document."""
        mapping = cls(model.__name__.lower())
        offset = 0
        while True:
            page = await store.find(
                model,
                Query(order_by=model.__id_field__, limit=page_size, offset=offset),
            )
            for document in page:
                mapping.add(document.legacy_id, document.uuid, slug=getattr(document, "slug", None))
            if len(page) < page_size:
                break
            offset += page_size
        logger.debug("Built %s identifier map with %d entries", mapping.entity_type, len(mapping))
        return mapping

    def add(self, legacy_id: int, uuid: str, *, slug: str | None = None) -> None:
        """
        Record a mapping.

        Re-adding an identical mapping is a no-op.

        Raises:
            IdentifierConflictError: If ``legacy_id`` is mapped to another uuid
        """
        existing = self._entries.get(legacy_id)
        if existing is not None:
            if existing.uuid != uuid:
                raise IdentifierConflictError(self.entity_type, legacy_id, existing.uuid, uuid)
            return
        self._entries[legacy_id] = IdentifierEntry(legacy_id=legacy_id, uuid=uuid, slug=slug)

    def get(self, legacy_id: int | None) -> str | None:
        if legacy_id is None:
            return None
        entry = self._entries.get(legacy_id)
        return entry.uuid if entry else None

    def entry(self, legacy_id: int) -> IdentifierEntry | None:
        return self._entries.get(legacy_id)

    def slug(self, legacy_id: int) -> str | None:
        entry = self._entries.get(legacy_id)
        return entry.slug if entry else None

    def __contains__(self, legacy_id: object) -> bool:
        return legacy_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[IdentifierEntry]:
        return iter(self._entries.values())


class TaxonomyMapping:
    """
    Resolves raw taxonomy labels to canonical tag and genre ids.

    Genre labels are resolved in three tiers:

    1. exact match on a canonical genre name (case-insensitive), or on a raw
       label the taxonomy migrator already assigned
    2. the normalizer's canonical label for the raw label, matched by name
    3. the slug of that canonical label

    When two genres share a name or slug, the lower id wins.
    """

    def __init__(self, normalizer: TaxonomyNormalizer = genre_normalizer) -> None:
        self._normalizer = normalizer
        self._tags: dict[str, int] = {}
        self._genre_labels: dict[str, int] = {}
        self._genre_names: dict[str, int] = {}
        self._genre_slugs: dict[str, int] = {}

    @staticmethod
    def _prefer_lower(table: dict[str, int], key: str, value: int) -> None:
        current = table.get(key)
        if current is None or value < current:
            table[key] = value

    def add_tag(self, label: str, tag_id: int) -> None:
        self._prefer_lower(self._tags, label.strip(), tag_id)

    def add_genre(self, name: str, slug: str, genre_id: int) -> None:
        """Register a canonical genre by name and slug."""
        self._prefer_lower(self._genre_names, name.strip().lower(), genre_id)
        self._prefer_lower(self._genre_slugs, slug.strip().lower(), genre_id)

    def add_genre_label(self, label: str, genre_id: int) -> None:
        """Register a raw legacy label that was folded into ``genre_id``."""
        self._prefer_lower(self._genre_labels, label, genre_id)

    @property
    def tag_count(self) -> int:
        return len(set(self._tags.values()))

    @property
    def genre_count(self) -> int:
        return len(set(self._genre_names.values()) | set(self._genre_slugs.values()))

    def genre_ids(self) -> set[int]:
        return set(self._genre_names.values()) | set(self._genre_slugs.values())

    def tag_id(self, label: str) -> int | None:
        return self._tags.get(label.strip())

    def genre_by_name(self, name: str) -> int | None:
        return self._genre_names.get(name.strip().lower())

    def resolve_genre(self, label: str) -> int | None:
        if not isinstance(label, str) or not label.strip():
            return None
        genre_id = self.genre_by_name(label)
        if genre_id is None:
            genre_id = self._genre_labels.get(label)
        if genre_id is not None:
            return genre_id
        mapped = self._normalizer.map_label(label).strip()
        if not mapped:
            return None
        genre_id = self.genre_by_name(mapped)
        if genre_id is None:
            genre_id = self._genre_labels.get(mapped)
        if genre_id is None:
            genre_id = self._genre_slugs.get(slugify(mapped))
        return genre_id

    def resolve_genres(self, labels: Iterable[str]) -> list[int]:
        """Resolve labels to de-duplicated genre ids, keeping first-seen order."""
        resolved: list[int] = []
        for label in labels:
            genre_id = self.resolve_genre(label)
            if genre_id is not None and genre_id not in resolved:
                resolved.append(genre_id)
        return resolved

    def resolve_tags(self, labels: Iterable[str]) -> tuple[list[int], list[str]]:
        """
        Resolve tag labels by direct lookup.

        Returns:
            Tuple of (resolved tag ids, labels that could not be resolved)
        """
        resolved: list[int] = []
        missing: list[str] = []
        for label in labels:
            if not isinstance(label, str) or not label.strip():
                continue
            tag_id = self.tag_id(label)
            if tag_id is None:
                missing.append(label)
            elif tag_id not in resolved:
                resolved.append(tag_id)
        return resolved, missing

    @classmethod
    async def from_store(
        cls,
        store: DocumentStore,
        normalizer: TaxonomyNormalizer = genre_normalizer,
    ) -> TaxonomyMapping:
        """
        Hydrate the mapping from the persisted tags and genres.

        Raw labels a genre absorbed are read back from its ``aliases``, so
        labels folded by the ceiling keep resolving to the fallback genre.
        Other raw labels resolve through the normalizer as usual.
        """
        mapping = cls(normalizer)
        for tag in await store.find(Tag, Query(order_by="tag_id")):
            mapping.add_tag(tag.name, tag.tag_id)
        for genre in await store.find(Genre, Query(order_by="genre_id")):
            mapping.add_genre(genre.name, genre.slug, genre.genre_id)
            for alias in genre.aliases:
                mapping.add_genre_label(alias, genre.genre_id)
        logger.debug(
            "Loaded taxonomy mapping: %d tags, %d genres", mapping.tag_count, mapping.genre_count
        )
        return mapping


__all__ = ["IdentifierEntry", "IdentifierMap", "TaxonomyMapping"]
