"""
Legacy relational records.

Each class mirrors one table of the legacy PostgreSQL schema. Records are
immutable; the migrators read them once and never write back to the source.
Only the columns the pipeline consumes are carried.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class LegacyTag:
    """Row of the ``tags`` table."""

    id: int
    name: str


@dataclass(frozen=True)
class LegacyGenre:
    """Row of the ``genres`` table."""

    id: int
    name: str


@dataclass(frozen=True)
class LegacyNovel:
    """
    Row of the ``novels`` table.

    ``tags`` and ``genres`` hold the raw label lists decoded from the JSON
    columns; ``source`` holds the numeric source ids.
    """

    id: int
    name: str
    slug: str
    status: str = "Ongoing"
    description: str | None = None
    author_id: int | None = None
    thumbnail: str | None = None
    cover: str | None = None
    rating: float | None = None
    bookmark_count: int | None = None
    views: int = 0
    tags: tuple[str, ...] = ()
    genres: tuple[str, ...] = ()
    source: tuple[int, ...] = ()
    published: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None


@dataclass(frozen=True)
class LegacyChapter:
    """Row of the ``chapters`` table."""

    id: int
    novel_id: int
    chapter_title: str
    chapter_number: int | None = None
    content: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class LegacyUser:
    """
    Row of the ``users`` table.

    ``bookmarks`` is the raw JSON column; see
    :func:`novelsync.migration.social.parse_bookmarks` for the accepted shapes.
    """

    id: int
    email: str
    name: str | None = None
    password: str = ""
    email_verified: bool | None = None
    image: str | None = None
    bookmarks: Any = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None


@dataclass(frozen=True)
class LegacyRating:
    """Row of the ``ratings`` table."""

    id: int
    novel_id: int
    user_id: int
    rating: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class LegacyComment:
    """Row of the ``comments`` table."""

    id: int
    user_id: int
    content: str
    novel_id: int | None = None
    chapter_id: int | None = None
    parent_id: int | None = None
    likes: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class LegacyReadingListItem:
    """Row of the ``reading_list_items`` table."""

    id: int
    reading_list_id: int
    novel_id: int
    added_at: datetime | None = None


@dataclass(frozen=True)
class LegacyReadingList:
    """Row of the ``reading_lists`` table."""

    id: int
    user_id: int
    name: str
    description: str | None = None
    is_public: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


__all__ = [
    "LegacyTag",
    "LegacyGenre",
    "LegacyNovel",
    "LegacyChapter",
    "LegacyUser",
    "LegacyRating",
    "LegacyComment",
    "LegacyReadingList",
    "LegacyReadingListItem",
]
