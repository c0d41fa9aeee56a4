"""
Standard span attributes for novelsync.

Attribute constants shared by the migrators, stores and the synchronizer so
that spans from different components can be grouped and filtered the same
way. Database attributes follow OpenTelemetry semantic conventions.

Example:
    >>> from novelsync.observability.attributes import ATTR_STAGE, ATTR_BATCH_SIZE
    >>>
    >>> with tracer.span(
    ...     "novelsync.content.migrate_batch",
    ...     {ATTR_STAGE: "content", ATTR_BATCH_SIZE: 100},
    ... ):
    ...     pass
"""

# =============================================================================
# Pipeline Attributes
# =============================================================================

ATTR_STAGE = "novelsync.stage"
"""Pipeline stage name (e.g., 'taxonomy', 'content')."""

ATTR_ENTITY_TYPE = "novelsync.entity.type"
"""Entity type being processed (e.g., 'novel', 'chapter')."""

ATTR_LEGACY_ID = "novelsync.legacy.id"
"""Integer surrogate id of the legacy record (integer)."""

ATTR_BATCH_SIZE = "novelsync.batch.size"
"""Number of records in a batch (integer)."""

ATTR_BATCH_OFFSET = "novelsync.batch.offset"
"""Offset of the batch within the legacy table (integer)."""

ATTR_RECORDS_MIGRATED = "novelsync.records.migrated"
"""Records migrated by an operation (integer)."""

ATTR_RECORDS_FAILED = "novelsync.records.failed"
"""Records that failed in an operation (integer)."""

ATTR_DRY_RUN = "novelsync.dry_run"
"""Whether writes are being suppressed (boolean)."""

# =============================================================================
# Sync Attributes
# =============================================================================

ATTR_CURSOR_POSITION = "novelsync.cursor.position"
"""Watermark in epoch milliseconds (integer)."""

ATTR_INDEX_NAME = "novelsync.index.name"
"""Search index name (e.g., 'novels')."""

ATTR_DOCUMENT_COUNT = "novelsync.document.count"
"""Number of documents in an index request (integer)."""

# =============================================================================
# Database Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'postgresql', 'mongodb', 'redis')."""

ATTR_DB_NAME = "db.name"
"""Database name."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation (e.g., 'find', 'insert', 'SELECT')."""

ATTR_DB_COLLECTION = "db.mongodb.collection"
"""Target collection or table name."""
