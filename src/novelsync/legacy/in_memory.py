"""
In-memory legacy source for testing and development.

Applies the same filtering and ordering rules as the PostgreSQL source so
migrator tests exercise production semantics without a database.
"""

from __future__ import annotations

from collections.abc import Iterable

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


class InMemoryLegacySource:
    """
    In-memory implementation of the LegacySource protocol.

    Example:
        >>> source = InMemoryLegacySource(novels=[LegacyNovel(id=1, name="A", slug="a")])
        >>> await source.count_novels()
        1
    """

    def __init__(
        self,
        *,
        tags: Iterable[LegacyTag] = (),
        genres: Iterable[LegacyGenre] = (),
        novels: Iterable[LegacyNovel] = (),
        chapters: Iterable[LegacyChapter] = (),
        users: Iterable[LegacyUser] = (),
        ratings: Iterable[LegacyRating] = (),
        comments: Iterable[LegacyComment] = (),
        reading_lists: Iterable[LegacyReadingList] = (),
        reading_list_items: Iterable[LegacyReadingListItem] = (),
    ) -> None:
        self.tags = list(tags)
        self.genres = list(genres)
        self.novels = list(novels)
        self.chapters = list(chapters)
        self.users = list(users)
        self.ratings = list(ratings)
        self.comments = list(comments)
        self.reading_lists = list(reading_lists)
        self.reading_list_items = list(reading_list_items)
        self.closed = False

    async def ping(self) -> None:
        return None

    async def fetch_tags(self) -> list[LegacyTag]:
        return sorted(self.tags, key=lambda t: t.id)

    async def fetch_genres(self) -> list[LegacyGenre]:
        return sorted(self.genres, key=lambda g: g.id)

    def _live_novels(self) -> list[LegacyNovel]:
        return sorted(
            (n for n in self.novels if n.published and n.deleted_at is None),
            key=lambda n: n.id,
        )

    async def count_novels(self) -> int:
        return len(self._live_novels())

    async def fetch_novels(self, limit: int, offset: int) -> list[LegacyNovel]:
        return self._live_novels()[offset : offset + limit]

    async def fetch_chapters(self, novel_id: int) -> list[LegacyChapter]:
        chapters = [c for c in self.chapters if c.novel_id == novel_id]
        # NULL chapter numbers sort last, as in PostgreSQL
        return sorted(
            chapters,
            key=lambda c: (c.chapter_number is None, c.chapter_number or 0, c.id),
        )

    def _live_users(self) -> list[LegacyUser]:
        return sorted((u for u in self.users if u.deleted_at is None), key=lambda u: u.id)

    async def count_users(self) -> int:
        return len(self._live_users())

    async def fetch_users(self, limit: int, offset: int) -> list[LegacyUser]:
        return self._live_users()[offset : offset + limit]

    def _ratings(self, min_rating: int) -> list[LegacyRating]:
        return sorted((r for r in self.ratings if r.rating >= min_rating), key=lambda r: r.id)

    async def count_ratings(self, min_rating: int) -> int:
        return len(self._ratings(min_rating))

    async def fetch_ratings(self, min_rating: int, limit: int, offset: int) -> list[LegacyRating]:
        return self._ratings(min_rating)[offset : offset + limit]

    def _novel_comments(self) -> list[LegacyComment]:
        return sorted(
            (c for c in self.comments if c.novel_id is not None and c.chapter_id is None),
            key=lambda c: c.id,
        )

    async def count_comments(self) -> int:
        return len(self._novel_comments())

    async def fetch_comments(self, limit: int, offset: int) -> list[LegacyComment]:
        return self._novel_comments()[offset : offset + limit]

    async def count_reading_lists(self) -> int:
        return len(self.reading_lists)

    async def count_reading_list_items(self) -> int:
        return len(self.reading_list_items)

    async def fetch_reading_lists(self, limit: int, offset: int) -> list[LegacyReadingList]:
        return sorted(self.reading_lists, key=lambda r: r.id)[offset : offset + limit]

    async def fetch_reading_list_items(self, list_id: int) -> list[LegacyReadingListItem]:
        items = [i for i in self.reading_list_items if i.reading_list_id == list_id]
        return sorted(items, key=lambda i: (i.added_at is None, i.added_at or 0, i.id))

    async def close(self) -> None:
        self.closed = True


__all__ = ["InMemoryLegacySource"]
