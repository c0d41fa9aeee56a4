"""
Legacy relational source: record types, the read protocol and its backends.
"""

from novelsync.legacy.in_memory import InMemoryLegacySource
from novelsync.legacy.interface import LegacySource
from novelsync.legacy.models import (
    LegacyChapter,
    LegacyComment,
    LegacyGenre,
    LegacyNovel,
    LegacyRating,
    LegacyReadingList,
    LegacyReadingListItem,
    LegacyTag,
    LegacyUser,
)
from novelsync.legacy.postgresql import PostgreSQLLegacySource, create_legacy_engine

__all__ = [
    "LegacySource",
    "InMemoryLegacySource",
    "PostgreSQLLegacySource",
    "create_legacy_engine",
    "LegacyChapter",
    "LegacyComment",
    "LegacyGenre",
    "LegacyNovel",
    "LegacyRating",
    "LegacyReadingList",
    "LegacyReadingListItem",
    "LegacyTag",
    "LegacyUser",
]
