"""
Exceptions for the novelsync migration pipeline.

Exception Hierarchy:
    NovelSyncError (base)
    +-- FatalMigrationError
    |   +-- ConfigurationError
    |   +-- StoreConnectionError
    +-- RecordMigrationError
    |   +-- MissingReferenceError
    +-- IdentifierConflictError
    +-- SearchIndexError
    +-- CursorError

Error Classification:
    Every exception carries an ErrorClassification with a severity (used to
    pick the log level) and a recoverability. FATAL errors abort the whole
    run; RECOVERABLE errors are caught at the per-record boundary and land
    in the stage's MigrationResult.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorSeverity(Enum):
    """
    Severity level of pipeline errors.

    Used to decide the log level when an error is reported.
    """

    CRITICAL = "critical"
    """Run-level failure; the pipeline cannot continue."""

    ERROR = "error"
    """A record or batch failed."""

    WARNING = "warning"
    """A record was skipped or a side effect failed."""

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    Recoverability classification for pipeline errors.

    RECOVERABLE errors are contained by the stage that raised them; a re-run
    of the pipeline heals them. FATAL errors abort the run immediately.
    """

    RECOVERABLE = "recoverable"
    """Contained at the per-record boundary; a re-run heals it."""

    FATAL = "fatal"
    """Aborts the run with a non-zero exit code."""

    @property
    def should_abort(self) -> bool:
        """True only for FATAL errors."""
        return self == ErrorRecoverability.FATAL


@dataclass(frozen=True)
class ErrorClassification:
    """
    Classification metadata attached to each exception type.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        suggested_action: Human-readable guidance for operators.
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    suggested_action: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "suggested_action": self.suggested_action,
        }


class NovelSyncError(Exception):
    """
    Base exception for all novelsync errors.

    Attributes:
        message: Human-readable error description.
        recoverable: Whether the run can continue past this error.
        suggested_action: Suggested action for recovery.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="NOVELSYNC_ERROR",
        suggested_action="Review the run report and re-run the pipeline",
    )

    def __init__(
        self,
        message: str,
        *,
        recoverable: bool = True,
        suggested_action: str | None = None,
    ) -> None:
        self.message = message
        self.recoverable = recoverable
        self.suggested_action = suggested_action
        super().__init__(message)

    @property
    def classification(self) -> ErrorClassification:
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def error_code(self) -> str:
        return self.classification.error_code

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for the run report.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "message": self.message,
            "recoverable": self.recoverable,
            "error_code": self.error_code,
            "suggested_action": self.suggested_action
            or self.classification.suggested_action,
            "classification": self.classification.to_dict(),
        }


class FatalMigrationError(NovelSyncError):
    """
    Raised when the pipeline cannot continue at all.

    Only the orchestrator and the CLI catch this; stages let it propagate.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="FATAL_MIGRATION_ERROR",
        suggested_action="Fix the underlying problem and start the run again",
    )

    def __init__(self, message: str, *, suggested_action: str | None = None) -> None:
        super().__init__(message, recoverable=False, suggested_action=suggested_action)


class ConfigurationError(FatalMigrationError):
    """
    Raised when required configuration is missing or invalid.

    Attributes:
        setting: Name of the offending setting, if known.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="CONFIGURATION_ERROR",
        suggested_action="Check the environment variables and CLI flags",
    )

    def __init__(self, message: str, *, setting: str | None = None) -> None:
        self.setting = setting
        super().__init__(message)


class StoreConnectionError(FatalMigrationError):
    """
    Raised when a required store cannot be reached.

    Attributes:
        store: Logical store name ("legacy", "documents", "search", "cursors").
        original_error: The underlying error message.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="STORE_CONNECTION_ERROR",
        suggested_action="Verify the store is running and the connection settings are correct",
    )

    def __init__(self, store: str, error: str) -> None:
        self.store = store
        self.original_error = error
        super().__init__(f"Cannot connect to {store} store: {error}")


class RecordMigrationError(NovelSyncError):
    """
    Raised when a single legacy record cannot be transformed or written.

    Attributes:
        entity_type: Entity being migrated (e.g., "novel").
        legacy_id: Legacy integer id of the record.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="RECORD_MIGRATION_ERROR",
        suggested_action="Re-run the stage after fixing the source record",
    )

    def __init__(self, entity_type: str, legacy_id: int, reason: str) -> None:
        self.entity_type = entity_type
        self.legacy_id = legacy_id
        super().__init__(f"Failed to migrate {entity_type} {legacy_id}: {reason}")


class MissingReferenceError(RecordMigrationError):
    """
    Raised when a record references an entity that was not migrated.

    Attributes:
        reference_type: Type of the missing entity ("user", "novel").
        reference_id: Legacy id of the missing entity.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="MISSING_REFERENCE",
        suggested_action="Migrate the referenced entity first, or ignore if it was filtered out",
    )

    def __init__(
        self,
        entity_type: str,
        legacy_id: int,
        reference_type: str,
        reference_id: int | None,
    ) -> None:
        self.reference_type = reference_type
        self.reference_id = reference_id
        super().__init__(
            entity_type,
            legacy_id,
            f"{reference_type} {reference_id} not found",
        )


class IdentifierConflictError(NovelSyncError):
    """
    Raised when an identifier map entry would be remapped.

    Identifier maps only grow; an existing legacy id always keeps the opaque
    identifier it was first given.
    """

    def __init__(self, entity_type: str, legacy_id: int, existing: str, attempted: str) -> None:
        self.entity_type = entity_type
        self.legacy_id = legacy_id
        self.existing = existing
        self.attempted = attempted
        super().__init__(
            f"{entity_type} {legacy_id} is already mapped to {existing}, refusing {attempted}"
        )


class SearchIndexError(NovelSyncError):
    """
    Raised when the search index rejects a request.

    Attributes:
        index: Name of the index.
        failures: Per-document failure reasons returned by the index.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="SEARCH_INDEX_ERROR",
        suggested_action="Check the search cluster health and re-run the sync",
    )

    def __init__(self, index: str, reason: str, failures: list[str] | None = None) -> None:
        self.index = index
        self.failures = failures or []
        super().__init__(f"Search index '{index}' request failed: {reason}")


class CursorError(NovelSyncError):
    """Raised when a sync cursor cannot be read or stored."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="CURSOR_ERROR",
        suggested_action="Check the cursor store; the next sync resumes from the stored value",
    )

    def __init__(self, entity_type: str, reason: str) -> None:
        self.entity_type = entity_type
        super().__init__(f"Cursor for '{entity_type}' unavailable: {reason}")


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "NovelSyncError",
    "FatalMigrationError",
    "ConfigurationError",
    "StoreConnectionError",
    "RecordMigrationError",
    "MissingReferenceError",
    "IdentifierConflictError",
    "SearchIndexError",
    "CursorError",
]
