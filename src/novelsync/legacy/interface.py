"""
Read-only interface to the legacy relational store.

Migrators depend on this protocol rather than on a database driver, so the
same stage code runs against PostgreSQL in production and against the
in-memory source in tests. Every paginated method orders by primary key, so
``limit``/``offset`` pagination is stable for the duration of a run.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

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


@runtime_checkable
class LegacySource(Protocol):
    """
    Protocol for reading the legacy dataset.

    Novels are filtered to published, non-deleted rows; users to
    non-deleted rows; comments to novel-level comments (no chapter).
    """

    async def ping(self) -> None:
        """Raise if the store cannot be reached."""
        ...

    async def fetch_tags(self) -> list[LegacyTag]: ...

    async def fetch_genres(self) -> list[LegacyGenre]: ...

    async def count_novels(self) -> int: ...

    async def fetch_novels(self, limit: int, offset: int) -> list[LegacyNovel]: ...

    async def fetch_chapters(self, novel_id: int) -> list[LegacyChapter]:
        """Chapters of one novel ordered by ``chapter_number`` then ``id``."""
        ...

    async def count_users(self) -> int: ...

    async def fetch_users(self, limit: int, offset: int) -> list[LegacyUser]: ...

    async def count_ratings(self, min_rating: int) -> int: ...

    async def fetch_ratings(
        self, min_rating: int, limit: int, offset: int
    ) -> list[LegacyRating]: ...

    async def count_comments(self) -> int: ...

    async def fetch_comments(self, limit: int, offset: int) -> list[LegacyComment]: ...

    async def count_reading_lists(self) -> int: ...

    async def count_reading_list_items(self) -> int: ...

    async def fetch_reading_lists(
        self, limit: int, offset: int
    ) -> list[LegacyReadingList]: ...

    async def fetch_reading_list_items(self, list_id: int) -> list[LegacyReadingListItem]:
        """Items of one list ordered by ``added_at``."""
        ...

    async def close(self) -> None: ...


__all__ = ["LegacySource"]
