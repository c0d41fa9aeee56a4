"""
Taxonomy normalization and migration.
"""

from novelsync.taxonomy.normalizer import (
    DEFAULT_GENRE,
    GENRE_CEILING,
    GENRE_TABLE,
    MappingStats,
    TaxonomyNormalizer,
    canonical_labels,
    mapping_stats,
    normalize,
    slugify,
)

__all__ = [
    "DEFAULT_GENRE",
    "GENRE_CEILING",
    "GENRE_TABLE",
    "MappingStats",
    "TaxonomyNormalizer",
    "canonical_labels",
    "mapping_stats",
    "normalize",
    "slugify",
]
