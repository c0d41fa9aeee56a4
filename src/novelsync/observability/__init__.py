"""
Observability utilities for novelsync.

Tracing and standard attribute definitions for consistent spans across the
pipeline components.

Note:
    OpenTelemetry is an optional dependency. All utilities in this module
    gracefully handle the case where OpenTelemetry is not installed.
"""

from novelsync.observability.attributes import (
    ATTR_BATCH_OFFSET,
    ATTR_BATCH_SIZE,
    ATTR_CURSOR_POSITION,
    ATTR_DB_COLLECTION,
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DOCUMENT_COUNT,
    ATTR_DRY_RUN,
    ATTR_ENTITY_TYPE,
    ATTR_INDEX_NAME,
    ATTR_LEGACY_ID,
    ATTR_RECORDS_FAILED,
    ATTR_RECORDS_MIGRATED,
    ATTR_STAGE,
)
from novelsync.observability.tracer import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "ATTR_BATCH_OFFSET",
    "ATTR_BATCH_SIZE",
    "ATTR_CURSOR_POSITION",
    "ATTR_DB_COLLECTION",
    "ATTR_DB_NAME",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SYSTEM",
    "ATTR_DOCUMENT_COUNT",
    "ATTR_DRY_RUN",
    "ATTR_ENTITY_TYPE",
    "ATTR_INDEX_NAME",
    "ATTR_LEGACY_ID",
    "ATTR_RECORDS_FAILED",
    "ATTR_RECORDS_MIGRATED",
    "ATTR_STAGE",
]
