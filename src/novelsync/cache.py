"""
Cache invalidation for novels served by the application layer.

The pipeline never reads the cache; it only drops ``novel:{slug}`` entries
after it changes a novel so readers do not see stale aggregates.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from novelsync.exceptions import StoreConnectionError

logger = logging.getLogger(__name__)

NOVEL_KEY_PREFIX = "novel:"


def novel_cache_key(slug: str) -> str:
    return f"{NOVEL_KEY_PREFIX}{slug}"


@runtime_checkable
class NovelCache(Protocol):
    """Protocol for the novel cache."""

    async def ping(self) -> None:
        """Raise StoreConnectionError if the cache cannot be reached."""
        ...

    async def invalidate(self, slug: str) -> None:
        """Drop the cached entry for a novel. Missing keys are not an error."""
        ...

    async def close(self) -> None: ...


class RedisNovelCache:
    """
    Redis-backed novel cache.

    Example:
        >>> cache = RedisNovelCache(aioredis.from_url("redis://localhost:6379"))
        >>> await cache.invalidate("the-wandering-sword")
    """

    def __init__(self, client: aioredis.Redis) -> None:
        self._redis = client

    async def ping(self) -> None:
        try:
            await self._redis.ping()
        except RedisError as e:
            raise StoreConnectionError("cache", str(e)) from e

    async def invalidate(self, slug: str) -> None:
        removed = await self._redis.delete(novel_cache_key(slug))
        logger.debug("Invalidated %s (%d key removed)", novel_cache_key(slug), removed)

    async def close(self) -> None:
        await self._redis.aclose()


class InMemoryNovelCache:
    """In-memory novel cache for testing; remembers what was invalidated."""

    def __init__(self, entries: dict[str, str] | None = None) -> None:
        self.entries: dict[str, str] = dict(entries or {})
        self.invalidated: list[str] = []
        self.fail = False

    async def ping(self) -> None:
        if self.fail:
            raise StoreConnectionError("cache", "cache unavailable")

    async def invalidate(self, slug: str) -> None:
        if self.fail:
            raise ConnectionError("cache unavailable")
        key = novel_cache_key(slug)
        self.entries.pop(key, None)
        self.invalidated.append(key)

    async def close(self) -> None:
        return None


def create_redis_client(url: str, *, socket_timeout: float = 5.0) -> aioredis.Redis:
    """Create the shared Redis client used for cursors and cache invalidation."""
    return aioredis.from_url(url, socket_timeout=socket_timeout, decode_responses=True)


__all__ = [
    "InMemoryNovelCache",
    "NOVEL_KEY_PREFIX",
    "NovelCache",
    "RedisNovelCache",
    "create_redis_client",
    "novel_cache_key",
]
