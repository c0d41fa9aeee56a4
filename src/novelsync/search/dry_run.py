"""
Write-suppressing search index wrapper for dry runs.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from novelsync.search.interface import IndexDocument, SearchIndex

logger = logging.getLogger(__name__)


class DryRunSearchIndex:
    """
    SearchIndex decorator that counts documents instead of writing them.

    Counts are read from the wrapped index, so the emptiness check of the
    synchronizer still reflects the real cluster.
    """

    def __init__(self, wrapped: SearchIndex) -> None:
        self._wrapped = wrapped
        self.suppressed_documents = 0

    async def ping(self) -> None:
        await self._wrapped.ping()

    async def ensure_index(self, index: str) -> None:
        logger.debug("Dry run: skipping creation of index %s", index)

    async def count(self, index: str) -> int:
        return await self._wrapped.count(index)

    async def upsert(self, index: str, documents: Sequence[IndexDocument]) -> int:
        self.suppressed_documents += len(documents)
        return len(documents)

    async def close(self) -> None:
        await self._wrapped.close()


__all__ = ["DryRunSearchIndex"]
