"""
Incremental synchronization of the search index with the document store.
"""

from novelsync.sync.cursors import (
    CursorRepository,
    InMemoryCursorRepository,
    MigrationCursor,
    RedisCursorRepository,
    SQLiteCursorRepository,
)
from novelsync.sync.synchronizer import (
    SYNC_TARGETS,
    IncrementalIndexSynchronizer,
    SyncReport,
)

__all__ = [
    "CursorRepository",
    "IncrementalIndexSynchronizer",
    "InMemoryCursorRepository",
    "MigrationCursor",
    "RedisCursorRepository",
    "SQLiteCursorRepository",
    "SYNC_TARGETS",
    "SyncReport",
]
