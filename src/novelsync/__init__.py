"""
novelsync - migration of the legacy novel platform to its document store.

This package provides:
- Taxonomy normalization and consolidation of legacy tags and genres
- Content, social and reading list migrators with per-record outcomes
- A stage orchestrator with dry-run support
- Incremental search index synchronization with persistent cursors
- Stats reconciliation of novel aggregates
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("novelsync")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from novelsync.config import ConnectionSettings, MigrationConfig, Stage
from novelsync.exceptions import (
    ConfigurationError,
    CursorError,
    FatalMigrationError,
    IdentifierConflictError,
    MissingReferenceError,
    NovelSyncError,
    RecordMigrationError,
    SearchIndexError,
    StoreConnectionError,
)
from novelsync.identity import IdentifierMap, TaxonomyMapping
from novelsync.migration import (
    ContentMigrator,
    MigrationResult,
    ProgressEvent,
    ReadingListMigrator,
    RecordOutcome,
    RecordStatus,
    SocialDataMigrator,
    StatsReconciler,
)
from novelsync.migration.orchestrator import MigrationOrchestrator, PipelineReport
from novelsync.sync import IncrementalIndexSynchronizer, SyncReport
from novelsync.taxonomy import TaxonomyNormalizer
from novelsync.taxonomy.migrator import TaxonomyMigrator

__all__ = [
    "__version__",
    # Configuration
    "ConnectionSettings",
    "MigrationConfig",
    "Stage",
    # Exceptions
    "ConfigurationError",
    "CursorError",
    "FatalMigrationError",
    "IdentifierConflictError",
    "MissingReferenceError",
    "NovelSyncError",
    "RecordMigrationError",
    "SearchIndexError",
    "StoreConnectionError",
    # Identity
    "IdentifierMap",
    "TaxonomyMapping",
    # Migration
    "ContentMigrator",
    "MigrationOrchestrator",
    "MigrationResult",
    "PipelineReport",
    "ProgressEvent",
    "ReadingListMigrator",
    "RecordOutcome",
    "RecordStatus",
    "SocialDataMigrator",
    "StatsReconciler",
    "TaxonomyMigrator",
    "TaxonomyNormalizer",
    # Sync
    "IncrementalIndexSynchronizer",
    "SyncReport",
]
