"""
Taxonomy label normalization.

The legacy data carries free-text genre labels with many spellings of the
same thing ("Sci-fi", "Science fiction", "Sci-fi Space"). ``GENRE_TABLE``
folds them into a bounded set of canonical labels. Labels that are not in
the table pass through unchanged; the taxonomy migrator enforces the ceiling
on how many distinct genres may exist.

Tags are not consolidated. They go through a normalizer with an empty table,
which only trims and de-duplicates.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

DEFAULT_GENRE = "General Fiction"
GENRE_CEILING = 50

GENRE_TABLE: dict[str, str] = {
    "Fan-Fiction": "Fan-Fiction",
    "Fantasy": "Fantasy",
    "Romance": "Romance",
    "Action": "Action",
    "Urban": "Urban",
    "Historical": "Historical",
    "Drama": "Drama",
    "Adventure": "Adventure",
    "Sci-fi": "Science Fiction",
    "Comedy": "Comedy",
    "Harem": "Harem",
    "Slice Of Life": "Slice of Life",
    "Xuanhuan": "Xuanhuan",
    "Supernatural": "Supernatural",
    "Xianxia": "Xianxia",
    "School Life": "School Life",
    "Martial Arts": "Martial Arts",
    "Sports": "Sports",
    "Game": "Gaming",
    "Mystery": "Mystery",
    "Psychological": "Psychological",
    "Horror": "Horror",
    "Tragedy": "Tragedy",
    "Suspense": "Suspense",
    "Military": "Military",
    "Wuxia": "Wuxia",
    "Ecchi": "Ecchi",
    "Yuri": "Yuri",
    "Virtual Reality": "Virtual Reality",
    "Gender Bender": "Gender Bender",
    "Mecha": "Mecha",
    "Mythology & Legends": "Mythology & Legends",
    "Video Games": "Gaming",
    "LGBT+": "LGBT+",
    "Official Circles": "Workplace",
    "Shounen-Ai": "Boys Love",
    "Fantasy Magic": "Fantasy",
    "Science Fiction": "Science Fiction",
    "Magical Realism": "Magical Realism",
    "Cultivation Martial Arts": "Martial Arts",
    "Wuxia Cultivation": "Wuxia",
    "Shoujo Ai": "Girls Love",
    "Horror & Supernatural": "Horror",
    "Traditional Wuxia": "Wuxia",
    "Sci-fi Space": "Science Fiction",
    "Classical Xianxia": "Xianxia",
    "Otherworldly Continent": "Fantasy",
    "Erciyuan": "Anime",
    "Traveling Through": "Time Travel",
    "VirtualReality": "Virtual Reality",
    "Reincarnation": "Reincarnation",
    "faloo": "Fantasy",
    "Wuxia Xianxia": "Wuxia",
    "Game Competition": "Gaming",
    "RealisticFiction": "Realistic Fiction",
    "Contemporary Romance": "Romance",
    "Suspense thriller": "Suspense",
    "Two-dimensional": "Anime",
    "Rebirth": "Reincarnation",
    "Travel": "Adventure",
    "Light Novel": "Light Novel",
    "Billionaire": "Billionaire",
    "Horror&": "Horror",
    "City": "Urban",
    "Historical Military": "Military",
    "Modern Life": "Slice of Life",
    "轻小说": "Light Novel",
    "Interstellar Cultivation": "Science Fiction",
    "Two Dimension": "Anime",
    "Science fiction": "Science Fiction",
    "Beauty": "Slice of Life",
    "Transmigration": "Fantasy",
    "Villain": "Action",
    "Modern Romance": "Romance",
    "War&": "War",
    "Traveling through time": "Time Travel",
    "CEO": "Slice of Life",
    "History": "Historical",
    "Reborn": "Reincarnation",
    "Serial": "General Fiction",
    "Dynasty Wars": "War",
    "Urban Brain": "Urban",
    "Doujin": "Fan-Fiction",
    "School Beauty": "School Life",
    "Science Fiction Online Game": "Gaming",
    "Survival": "Adventure",
    "Completed": "Completed",
    "Military History": "Military",
    "LGBT": "LGBT+",
    "Doctor": "Slice of Life",
    "Secret": "Mystery",
    "Throungh": "Time Travel",
    "Modern": "Slice of Life",
    "Competitive Sports": "Sports",
    "Teen": "Young Adult",
    "Magic": "Fantasy",
    "Online Games": "Gaming",
    "Pirates": "Adventure",
    "Shoujo-Ai": "Romance",
    "Entertainment": "Slice of Life",
    "Dimension": "Fantasy",
    "Modern&": "Slice of Life",
    "GayRomance": "LGBT+",
    "Empress": "Historical",
    "Live": "Slice of Life",
    "Single Female": "Romance",
    "Fanfcition": "Fan-Fiction",
    "War&Military": "War",
    "Terror": "Horror",
    "SliceOfLife": "Slice of Life",
    "Ancient Romance": "Romance",
    "Star": "Slice of Life",
    "Oriental Fantasy": "Fantasy",
    "Magical realism": "Magical Realism",
    "Funny": "Comedy",
    "Youth & Campus": "School Life",
    "Realism": "Realistic Fiction",
    "Realistic": "Realistic Fiction",
    "Fiction": "General Fiction",
    "Youth Campus": "School Life",
    "Science Fiction Online": "Gaming",
    "Science": "Science Fiction",
    "Military Histo": "Military",
    "Billionaires": "Billionaire",
    "Crossing": "Time Travel",
    "Suspense Thriller": "Suspense",
    "Special Force": "Military",
    "短篇其他": "Short Story",
}

_WHITESPACE = re.compile(r"\s+")
_NON_SLUG = re.compile(r"[^a-z0-9-]")


def slugify(label: str, *, fallback: str = "") -> str:
    """
    Turn a label into a URL slug.

    Lowercases, replaces whitespace runs with ``-`` and removes anything
    outside ``[a-z0-9-]``. Returns ``fallback`` when nothing is left.

    Example:
        >>> slugify("Slice of Life")
        'slice-of-life'
        >>> slugify("轻小说", fallback="genre-7")
        'genre-7'
    """
    slug = _NON_SLUG.sub("", _WHITESPACE.sub("-", label.strip().lower()))
    return slug or fallback


@dataclass(frozen=True)
class MappingStats:
    """
    Summary of a lookup table.

    Attributes:
        source_labels: Number of raw labels in the table
        canonical_labels: Number of distinct canonical labels
        label_counts: Raw labels per canonical label, most consolidated first
        consolidation_ratio: Percentage of raw labels folded away
    """

    source_labels: int
    canonical_labels: int
    label_counts: list[tuple[str, int]] = field(default_factory=list)
    consolidation_ratio: float = 0.0


class TaxonomyNormalizer:
    """
    Maps raw taxonomy labels onto canonical labels.

    Lookups try the label as given, then its trimmed form. The result of
    ``normalize`` is trimmed, free of empty labels and de-duplicated with the
    first occurrence kept.

    Example:
        >>> genres = TaxonomyNormalizer(GENRE_TABLE)
        >>> genres.normalize(["Sci-fi", "Game", "Video Games", "  "])
        ['Science Fiction', 'Gaming']
    """

    def __init__(self, table: Mapping[str, str] | None = None) -> None:
        self._table: dict[str, str] = dict(table or {})

    def map_label(self, label: str) -> str:
        """Map one label; unknown labels come back unchanged."""
        if label in self._table:
            return self._table[label]
        return self._table.get(label.strip(), label)

    def normalize(self, labels: Iterable[str]) -> list[str]:
        result: list[str] = []
        for label in labels:
            if not isinstance(label, str):
                continue
            mapped = self.map_label(label).strip()
            if mapped and mapped not in result:
                result.append(mapped)
        return result

    def is_known(self, label: str) -> bool:
        return label in self._table or label.strip() in self._table

    def canonical_labels(self) -> list[str]:
        """Sorted distinct canonical labels of the table."""
        return sorted(set(self._table.values()))

    def mapping_stats(self) -> MappingStats:
        counts = Counter(self._table.values())
        total = len(self._table)
        unique = len(counts)
        ratio = round((total - unique) / total * 100, 1) if total else 0.0
        return MappingStats(
            source_labels=total,
            canonical_labels=unique,
            label_counts=sorted(counts.items(), key=lambda item: (-item[1], item[0])),
            consolidation_ratio=ratio,
        )


genre_normalizer = TaxonomyNormalizer(GENRE_TABLE)
tag_normalizer = TaxonomyNormalizer()


def normalize(labels: Iterable[str]) -> list[str]:
    """Normalize genre labels with the default genre table."""
    return genre_normalizer.normalize(labels)


def canonical_labels() -> list[str]:
    return genre_normalizer.canonical_labels()


def mapping_stats() -> MappingStats:
    return genre_normalizer.mapping_stats()


__all__ = [
    "DEFAULT_GENRE",
    "GENRE_CEILING",
    "GENRE_TABLE",
    "MappingStats",
    "TaxonomyNormalizer",
    "canonical_labels",
    "genre_normalizer",
    "mapping_stats",
    "normalize",
    "slugify",
    "tag_normalizer",
]
