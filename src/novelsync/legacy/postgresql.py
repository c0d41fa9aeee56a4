"""
PostgreSQL implementation of the legacy source.

Queries are plain ``text()`` statements executed through an SQLAlchemy
``AsyncEngine`` (asyncpg driver). The schema name is validated once at
construction and interpolated into the statements; all values go through
bound parameters.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from novelsync.exceptions import ConfigurationError, StoreConnectionError
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
from novelsync.observability import Tracer, create_tracer
from novelsync.observability.attributes import (
    ATTR_BATCH_OFFSET,
    ATTR_BATCH_SIZE,
    ATTR_DB_COLLECTION,
    ATTR_DB_SYSTEM,
)

logger = logging.getLogger(__name__)

_SCHEMA_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
) -> AsyncIterator[AsyncConnection]:
    """
    Yield a connection for a read-only statement.

    Accepts either an engine (a pooled connection is checked out for the
    duration of the block) or an existing connection, which is used as is.
    """
    if isinstance(conn, AsyncEngine):
        async with conn.connect() as connection:
            yield connection
    else:
        yield conn


def decode_json(value: Any) -> Any:
    """
    Decode a JSON column value.

    asyncpg returns ``json``/``jsonb`` columns as text unless a codec is
    registered; already-decoded values are returned unchanged. Malformed
    text decodes to ``None``.
    """
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return None
    return value


def _string_list(value: Any) -> tuple[str, ...]:
    decoded = decode_json(value)
    if not isinstance(decoded, list):
        return ()
    return tuple(item for item in decoded if isinstance(item, str))


def _int_list(value: Any) -> tuple[int, ...]:
    decoded = decode_json(value)
    if not isinstance(decoded, list):
        return ()
    # bool is an int subclass; exclude it explicitly
    return tuple(
        int(item)
        for item in decoded
        if isinstance(item, (int, float)) and not isinstance(item, bool)
    )


def novel_from_row(row: Mapping[str, Any]) -> LegacyNovel:
    rating = row.get("rating")
    return LegacyNovel(
        id=row["id"],
        name=row.get("name") or "",
        slug=row.get("slug") or "",
        status=row.get("status") or "Ongoing",
        description=row.get("description"),
        author_id=row.get("author_id"),
        thumbnail=row.get("thumbnail"),
        cover=row.get("cover"),
        rating=float(rating) if rating is not None else None,
        bookmark_count=row.get("bookmarkcount"),
        views=row.get("views") or 0,
        tags=_string_list(row.get("tags")),
        genres=_string_list(row.get("genres")),
        source=_int_list(row.get("source")),
        published=bool(row.get("published")),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
        deleted_at=row.get("deleted_at"),
    )


class PostgreSQLLegacySource:
    """
    Legacy source backed by the original PostgreSQL database.

    Example:
        >>> engine = create_legacy_engine("postgresql+asyncpg://user:pw@host/db")
        >>> source = PostgreSQLLegacySource(engine, schema="public")
        >>> novels = await source.fetch_novels(limit=100, offset=0)
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        schema: str = "public",
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the legacy source.

        Args:
            conn: Database connection or engine
            schema: Schema holding the legacy tables
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)

        Raises:
            ConfigurationError: If the schema name is not a plain identifier
        """
        if not _SCHEMA_PATTERN.match(schema):
            raise ConfigurationError(f"Invalid schema name: {schema!r}", setting="PG_SCHEMA")
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self.conn = conn
        self._schema = schema

    def _table(self, name: str) -> str:
        return f'"{self._schema}".{name}'

    async def _fetch(
        self,
        table: str,
        sql: str,
        params: dict[str, Any] | None = None,
    ) -> list[Mapping[str, Any]]:
        with self._tracer.span(
            "novelsync.legacy.fetch",
            {
                ATTR_DB_SYSTEM: "postgresql",
                ATTR_DB_COLLECTION: table,
                ATTR_BATCH_SIZE: (params or {}).get("limit", 0),
                ATTR_BATCH_OFFSET: (params or {}).get("offset", 0),
            },
        ):
            async with execute_with_connection(self.conn) as conn:
                result = await conn.execute(text(sql), params or {})
                return [row._mapping for row in result.fetchall()]

    async def _count(self, table: str, sql: str, params: dict[str, Any] | None = None) -> int:
        rows = await self._fetch(table, sql, params)
        return int(rows[0]["count"]) if rows else 0

    async def ping(self) -> None:
        try:
            async with execute_with_connection(self.conn) as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            raise StoreConnectionError("legacy", str(e)) from e

    async def fetch_tags(self) -> list[LegacyTag]:
        rows = await self._fetch(
            "tags",
            f"SELECT id, name FROM {self._table('tags')} ORDER BY id",  # nosec B608
        )
        return [LegacyTag(id=row["id"], name=row["name"] or "") for row in rows]

    async def fetch_genres(self) -> list[LegacyGenre]:
        rows = await self._fetch(
            "genres",
            f"SELECT id, name FROM {self._table('genres')} ORDER BY id",  # nosec B608
        )
        return [LegacyGenre(id=row["id"], name=row["name"] or "") for row in rows]

    async def count_novels(self) -> int:
        return await self._count(
            "novels",
            f"""
            SELECT COUNT(*) AS count FROM {self._table("novels")}
            WHERE deleted_at IS NULL AND published = true
            """,  # nosec B608
        )

    async def fetch_novels(self, limit: int, offset: int) -> list[LegacyNovel]:
        rows = await self._fetch(
            "novels",
            f"""
            SELECT * FROM {self._table("novels")}
            WHERE deleted_at IS NULL AND published = true
            ORDER BY id
            LIMIT :limit OFFSET :offset
            """,  # nosec B608
            {"limit": limit, "offset": offset},
        )
        return [novel_from_row(row) for row in rows]

    async def fetch_chapters(self, novel_id: int) -> list[LegacyChapter]:
        rows = await self._fetch(
            "chapters",
            f"""
            SELECT id, novel_id, chapter_number, chapter_title, content,
                   created_at, updated_at
            FROM {self._table("chapters")}
            WHERE novel_id = :novel_id
            ORDER BY chapter_number, id
            """,  # nosec B608
            {"novel_id": novel_id},
        )
        return [
            LegacyChapter(
                id=row["id"],
                novel_id=row["novel_id"],
                chapter_title=row["chapter_title"] or "",
                chapter_number=row["chapter_number"],
                content=row["content"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    async def count_users(self) -> int:
        return await self._count(
            "users",
            f"""
            SELECT COUNT(*) AS count FROM {self._table("users")}
            WHERE deleted_at IS NULL
            """,  # nosec B608
        )

    async def fetch_users(self, limit: int, offset: int) -> list[LegacyUser]:
        rows = await self._fetch(
            "users",
            f"""
            SELECT id, name, email, password, email_verified, image, bookmarks,
                   created_at, updated_at, deleted_at
            FROM {self._table("users")}
            WHERE deleted_at IS NULL
            ORDER BY id
            LIMIT :limit OFFSET :offset
            """,  # nosec B608
            {"limit": limit, "offset": offset},
        )
        return [
            LegacyUser(
                id=row["id"],
                email=row["email"] or "",
                name=row["name"],
                password=row["password"] or "",
                email_verified=row["email_verified"],
                image=row["image"],
                bookmarks=row["bookmarks"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                deleted_at=row["deleted_at"],
            )
            for row in rows
        ]

    async def count_ratings(self, min_rating: int) -> int:
        return await self._count(
            "ratings",
            f"""
            SELECT COUNT(*) AS count FROM {self._table("ratings")}
            WHERE rating >= :min_rating
            """,  # nosec B608
            {"min_rating": min_rating},
        )

    async def fetch_ratings(self, min_rating: int, limit: int, offset: int) -> list[LegacyRating]:
        rows = await self._fetch(
            "ratings",
            f"""
            SELECT id, novel_id, user_id, rating, created_at, updated_at
            FROM {self._table("ratings")}
            WHERE rating >= :min_rating
            ORDER BY id
            LIMIT :limit OFFSET :offset
            """,  # nosec B608
            {"min_rating": min_rating, "limit": limit, "offset": offset},
        )
        return [
            LegacyRating(
                id=row["id"],
                novel_id=row["novel_id"],
                user_id=row["user_id"],
                rating=row["rating"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    async def count_comments(self) -> int:
        return await self._count(
            "comments",
            f"""
            SELECT COUNT(*) AS count FROM {self._table("comments")}
            WHERE novel_id IS NOT NULL AND chapter_id IS NULL
            """,  # nosec B608
        )

    async def fetch_comments(self, limit: int, offset: int) -> list[LegacyComment]:
        rows = await self._fetch(
            "comments",
            f"""
            SELECT id, user_id, novel_id, chapter_id, content, parent_id, likes,
                   created_at, updated_at
            FROM {self._table("comments")}
            WHERE novel_id IS NOT NULL AND chapter_id IS NULL
            ORDER BY id
            LIMIT :limit OFFSET :offset
            """,  # nosec B608
            {"limit": limit, "offset": offset},
        )
        return [
            LegacyComment(
                id=row["id"],
                user_id=row["user_id"],
                content=row["content"] or "",
                novel_id=row["novel_id"],
                chapter_id=row["chapter_id"],
                parent_id=row["parent_id"],
                likes=row["likes"] or 0,
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    async def count_reading_lists(self) -> int:
        return await self._count(
            "reading_lists",
            f"SELECT COUNT(*) AS count FROM {self._table('reading_lists')}",  # nosec B608
        )

    async def count_reading_list_items(self) -> int:
        return await self._count(
            "reading_list_items",
            f"SELECT COUNT(*) AS count FROM {self._table('reading_list_items')}",  # nosec B608
        )

    async def fetch_reading_lists(self, limit: int, offset: int) -> list[LegacyReadingList]:
        rows = await self._fetch(
            "reading_lists",
            f"""
            SELECT id, user_id, name, description, is_public, created_at, updated_at
            FROM {self._table("reading_lists")}
            ORDER BY id
            LIMIT :limit OFFSET :offset
            """,  # nosec B608
            {"limit": limit, "offset": offset},
        )
        return [
            LegacyReadingList(
                id=row["id"],
                user_id=row["user_id"],
                name=row["name"] or "",
                description=row["description"],
                is_public=bool(row["is_public"]),
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    async def fetch_reading_list_items(self, list_id: int) -> list[LegacyReadingListItem]:
        rows = await self._fetch(
            "reading_list_items",
            f"""
            SELECT id, reading_list_id, novel_id, added_at
            FROM {self._table("reading_list_items")}
            WHERE reading_list_id = :list_id
            ORDER BY added_at, id
            """,  # nosec B608
            {"list_id": list_id},
        )
        return [
            LegacyReadingListItem(
                id=row["id"],
                reading_list_id=row["reading_list_id"],
                novel_id=row["novel_id"],
                added_at=row["added_at"],
            )
            for row in rows
        ]

    async def close(self) -> None:
        if isinstance(self.conn, AsyncEngine):
            await self.conn.dispose()
            logger.debug("Disposed legacy PostgreSQL engine")


def create_legacy_engine(
    url: str,
    *,
    query_timeout: float = 60.0,
    ssl: bool = False,
    pool_size: int = 5,
) -> AsyncEngine:
    """
    Create the asyncpg-backed engine for the legacy database.

    Args:
        url: SQLAlchemy URL (``postgresql+asyncpg://...``)
        query_timeout: Per-statement timeout in seconds
        ssl: Whether to require TLS
        pool_size: Connection pool size; match it to the migration concurrency

    Returns:
        Configured AsyncEngine
    """
    connect_args: dict[str, Any] = {"command_timeout": query_timeout}
    if ssl:
        connect_args["ssl"] = "require"
    return create_async_engine(url, pool_size=pool_size, connect_args=connect_args)


__all__ = [
    "PostgreSQLLegacySource",
    "create_legacy_engine",
    "decode_json",
    "execute_with_connection",
    "novel_from_row",
]
