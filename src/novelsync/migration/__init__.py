"""
Migration stages.

The orchestrator lives in :mod:`novelsync.migration.orchestrator` and is
re-exported from the top-level package.
"""

from novelsync.migration.base import (
    MigrationResult,
    ProgressCallback,
    ProgressEvent,
    RecordOutcome,
    RecordStatus,
    run_bounded,
    run_paginated,
)
from novelsync.migration.content import ContentMigrator, count_words
from novelsync.migration.reading_lists import ListVerification, ReadingListMigrator
from novelsync.migration.social import SocialDataMigrator, parse_bookmarks
from novelsync.migration.stats import StatsReconciler

__all__ = [
    "ContentMigrator",
    "ListVerification",
    "MigrationResult",
    "ProgressCallback",
    "ProgressEvent",
    "ReadingListMigrator",
    "RecordOutcome",
    "RecordStatus",
    "SocialDataMigrator",
    "StatsReconciler",
    "count_words",
    "parse_bookmarks",
    "run_bounded",
    "run_paginated",
]
