"""
Cursor repositories for the incremental index synchronizer.

A cursor is the ``updated_at`` (in epoch milliseconds) of the newest
document of one entity type that is known to be in the search index. Cursors
only move forward; ``advance_cursor`` keeps the larger of the stored and the
proposed value. A reset sets the cursor back to zero, which makes the next
sync re-index everything.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

import aiosqlite
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from novelsync.exceptions import CursorError
from novelsync.observability import Tracer, create_tracer
from novelsync.observability.attributes import ATTR_CURSOR_POSITION, ATTR_ENTITY_TYPE

REDIS_KEY_PREFIX = "es:cursor:"

_ADVANCE_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local proposed = tonumber(ARGV[1])
if proposed > current then
    redis.call('SET', KEYS[1], ARGV[1])
    return proposed
end
return current
"""


@dataclass(frozen=True)
class MigrationCursor:
    """
    Stored sync position of one entity type.

    Attributes:
        entity_type: Entity the cursor belongs to ("novel", "chapter")
        position: ``updated_at`` of the newest indexed document, epoch millis
        updated_at: When the cursor last moved, if the store records it
    """

    entity_type: str
    position: int = 0
    updated_at: datetime | None = None


@runtime_checkable
class CursorRepository(Protocol):
    """
    Protocol for cursor repositories.

    Implementations must make ``advance_cursor`` monotonic.
    """

    async def get_cursor(self, entity_type: str) -> int:
        """Current position, 0 when no cursor is stored."""
        ...

    async def advance_cursor(self, entity_type: str, position: int) -> int:
        """
        Move the cursor forward to ``position``.

        Returns:
            The stored position afterwards (never less than before)
        """
        ...

    async def reset_cursor(self, entity_type: str) -> None: ...

    async def reset_all(self) -> None: ...

    async def get_all_cursors(self) -> list[MigrationCursor]: ...


class InMemoryCursorRepository:
    """
    In-memory cursor repository for testing.

    Example:
        >>> cursors = InMemoryCursorRepository()
        >>> await cursors.advance_cursor("novel", 1_700_000_000_000)
        1700000000000
    """

    def __init__(self, tracer: Tracer | None = None, enable_tracing: bool = True) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._cursors: dict[str, MigrationCursor] = {}
        self._lock = asyncio.Lock()

    async def get_cursor(self, entity_type: str) -> int:
        async with self._lock:
            cursor = self._cursors.get(entity_type)
            return cursor.position if cursor else 0

    async def advance_cursor(self, entity_type: str, position: int) -> int:
        with self._tracer.span(
            "novelsync.cursor.advance",
            {ATTR_ENTITY_TYPE: entity_type, ATTR_CURSOR_POSITION: position},
        ):
            async with self._lock:
                current = self._cursors.get(entity_type)
                if current is not None and current.position >= position:
                    return current.position
                self._cursors[entity_type] = MigrationCursor(
                    entity_type=entity_type, position=position, updated_at=datetime.now(UTC)
                )
                return position

    async def reset_cursor(self, entity_type: str) -> None:
        async with self._lock:
            self._cursors.pop(entity_type, None)

    async def reset_all(self) -> None:
        async with self._lock:
            self._cursors.clear()

    async def get_all_cursors(self) -> list[MigrationCursor]:
        async with self._lock:
            return [self._cursors[name] for name in sorted(self._cursors)]


class SQLiteCursorRepository:
    """
    SQLite cursor repository.

    Stores cursors in the ``sync_cursors`` table. The monotonic advance is a
    single UPSERT (SQLite 3.24+).

    Example:
        >>> async with aiosqlite.connect("novelsync-cursors.db") as db:
        ...     cursors = SQLiteCursorRepository(db)
        ...     await cursors.create_table()
        ...     await cursors.advance_cursor("chapter", 1_700_000_000_000)
    """

    def __init__(
        self,
        connection: aiosqlite.Connection,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._connection = connection

    async def create_table(self) -> None:
        await self._connection.execute(
            """
            CREATE TABLE IF NOT EXISTS sync_cursors (
                entity_type TEXT PRIMARY KEY,
                position INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
            """
        )
        await self._connection.commit()

    async def get_cursor(self, entity_type: str) -> int:
        try:
            cursor = await self._connection.execute(
                "SELECT position FROM sync_cursors WHERE entity_type = ?",
                (entity_type,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise CursorError(entity_type, str(e)) from e
        return int(row[0]) if row else 0

    async def advance_cursor(self, entity_type: str, position: int) -> int:
        with self._tracer.span(
            "novelsync.cursor.advance",
            {ATTR_ENTITY_TYPE: entity_type, ATTR_CURSOR_POSITION: position},
        ):
            try:
                await self._connection.execute(
                    """
                    INSERT INTO sync_cursors (entity_type, position, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(entity_type) DO UPDATE SET
                        position = MAX(sync_cursors.position, excluded.position),
                        updated_at = excluded.updated_at
                    """,
                    (entity_type, position, datetime.now(UTC).isoformat()),
                )
                await self._connection.commit()
            except aiosqlite.Error as e:
                raise CursorError(entity_type, str(e)) from e
            return await self.get_cursor(entity_type)

    async def reset_cursor(self, entity_type: str) -> None:
        await self._connection.execute(
            "DELETE FROM sync_cursors WHERE entity_type = ?", (entity_type,)
        )
        await self._connection.commit()

    async def reset_all(self) -> None:
        await self._connection.execute("DELETE FROM sync_cursors")
        await self._connection.commit()

    async def get_all_cursors(self) -> list[MigrationCursor]:
        cursor = await self._connection.execute(
            "SELECT entity_type, position, updated_at FROM sync_cursors ORDER BY entity_type"
        )
        rows = await cursor.fetchall()
        return [
            MigrationCursor(
                entity_type=row[0],
                position=int(row[1]),
                updated_at=datetime.fromisoformat(row[2]) if row[2] else None,
            )
            for row in rows
        ]


class RedisCursorRepository:
    """
    Redis cursor repository.

    Each cursor is a plain string key ``es:cursor:{entity_type}``, which is
    what the application's own indexer reads. The advance runs as a Lua
    script so the compare and the write are atomic.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._redis = client

    @staticmethod
    def key(entity_type: str) -> str:
        return f"{REDIS_KEY_PREFIX}{entity_type}"

    async def get_cursor(self, entity_type: str) -> int:
        try:
            value = await self._redis.get(self.key(entity_type))
        except RedisError as e:
            raise CursorError(entity_type, str(e)) from e
        return int(value) if value else 0

    async def advance_cursor(self, entity_type: str, position: int) -> int:
        with self._tracer.span(
            "novelsync.cursor.advance",
            {ATTR_ENTITY_TYPE: entity_type, ATTR_CURSOR_POSITION: position},
        ):
            try:
                stored = await self._redis.eval(
                    _ADVANCE_SCRIPT, 1, self.key(entity_type), str(position)
                )
            except RedisError as e:
                raise CursorError(entity_type, str(e)) from e
            return int(stored)

    async def reset_cursor(self, entity_type: str) -> None:
        try:
            await self._redis.delete(self.key(entity_type))
        except RedisError as e:
            raise CursorError(entity_type, str(e)) from e

    async def _keys(self) -> list[str]:
        return sorted([key async for key in self._redis.scan_iter(match=f"{REDIS_KEY_PREFIX}*")])

    async def reset_all(self) -> None:
        try:
            keys = await self._keys()
            if keys:
                await self._redis.delete(*keys)
        except RedisError as e:
            raise CursorError("*", str(e)) from e

    async def get_all_cursors(self) -> list[MigrationCursor]:
        cursors: list[MigrationCursor] = []
        for key in await self._keys():
            value = await self._redis.get(key)
            cursors.append(
                MigrationCursor(
                    entity_type=key.removeprefix(REDIS_KEY_PREFIX),
                    position=int(value) if value else 0,
                )
            )
        return cursors


__all__ = [
    "CursorRepository",
    "InMemoryCursorRepository",
    "MigrationCursor",
    "REDIS_KEY_PREFIX",
    "RedisCursorRepository",
    "SQLiteCursorRepository",
]
