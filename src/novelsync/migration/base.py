"""
Shared building blocks for migration stages.

Every stage processes legacy records one at a time and turns each into a
``RecordOutcome``. ``run_bounded`` fans the work out under a semaphore and
converts recoverable exceptions into failed outcomes, so a single bad record
never stops a stage. Outcomes are folded into the stage's
``MigrationResult``, which ends up in the run report.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from novelsync.exceptions import FatalMigrationError, MissingReferenceError, NovelSyncError
from novelsync.observability import NullTracer, Tracer
from novelsync.observability.attributes import (
    ATTR_BATCH_OFFSET,
    ATTR_BATCH_SIZE,
    ATTR_ENTITY_TYPE,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RecordStatus(Enum):
    """What happened to a single legacy record."""

    MIGRATED = "migrated"
    """Written, or already present from an earlier run."""

    SKIPPED = "skipped"
    """Deliberately not written (e.g., a reference is missing)."""

    FAILED = "failed"
    """An error prevented the write."""


@dataclass(frozen=True)
class RecordOutcome:
    """
    Typed result of processing one legacy record.

    Attributes:
        status: What happened to the record
        legacy_id: Legacy id of the record, when it has one
        message: Warning (skipped) or error (failed) text
        warnings: Non-fatal notes attached to a migrated record
        details: Detail counters to increment (e.g., "existing", "chapters")
    """

    status: RecordStatus
    legacy_id: int | None = None
    message: str | None = None
    warnings: tuple[str, ...] = ()
    details: tuple[tuple[str, int], ...] = ()

    @classmethod
    def migrated(
        cls,
        legacy_id: int | None = None,
        *,
        warnings: Iterable[str] = (),
        details: dict[str, int] | None = None,
    ) -> RecordOutcome:
        return cls(
            status=RecordStatus.MIGRATED,
            legacy_id=legacy_id,
            warnings=tuple(warnings),
            details=tuple((details or {}).items()),
        )

    @classmethod
    def existing(cls, legacy_id: int | None = None) -> RecordOutcome:
        """A record an earlier run already wrote; counts as migrated."""
        return cls.migrated(legacy_id, details={"existing": 1})

    @classmethod
    def skipped(
        cls,
        legacy_id: int | None = None,
        *,
        warning: str | None = None,
        details: dict[str, int] | None = None,
    ) -> RecordOutcome:
        return cls(
            status=RecordStatus.SKIPPED,
            legacy_id=legacy_id,
            message=warning,
            details=tuple((details or {}).items()),
        )

    @classmethod
    def failed(cls, legacy_id: int | None, error: str) -> RecordOutcome:
        return cls(status=RecordStatus.FAILED, legacy_id=legacy_id, message=error)


@dataclass
class MigrationResult:
    """
    Counters and messages for one stage.

    Attributes:
        stage: Stage name
        total: Records seen
        migrated: Records written or already present
        failed: Records that raised an error
        skipped: Records deliberately not written
        details: Stage-specific counters
        errors: Error messages, in the order they happened
        warnings: Warning messages, in the order they happened
    """

    stage: str
    total: int = 0
    migrated: int = 0
    failed: int = 0
    skipped: int = 0
    details: Counter[str] = field(default_factory=Counter)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def success(self) -> bool:
        return self.failed == 0 and not self.errors

    @property
    def duration_seconds(self) -> float:
        end = self.completed_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    def record(self, outcome: RecordOutcome) -> None:
        self.total += 1
        if outcome.status is RecordStatus.MIGRATED:
            self.migrated += 1
        elif outcome.status is RecordStatus.SKIPPED:
            self.skipped += 1
            if outcome.message:
                self.warnings.append(outcome.message)
        else:
            self.failed += 1
            self.errors.append(outcome.message or f"record {outcome.legacy_id} failed")
        self.warnings.extend(outcome.warnings)
        for key, amount in outcome.details:
            self.details[key] += amount

    def record_all(self, outcomes: Iterable[RecordOutcome]) -> None:
        for outcome in outcomes:
            self.record(outcome)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def fail_batch(self, size: int, error: str) -> None:
        """Mark a whole batch failed (e.g., the source fetch raised)."""
        self.total += size
        self.failed += size
        self.errors.append(error)

    def complete(self) -> MigrationResult:
        self.completed_at = datetime.now(UTC)
        return self

    def summary(self) -> str:
        return (
            f"{self.stage}: {self.migrated}/{self.total} migrated, "
            f"{self.skipped} skipped, {self.failed} failed"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "total": self.total,
            "migrated": self.migrated,
            "failed": self.failed,
            "skipped": self.skipped,
            "details": dict(self.details),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass(frozen=True)
class ProgressEvent:
    """
    Emitted at batch boundaries.

    Attributes:
        stage: Stage name
        processed: Records processed so far in the stage
        total: Records the stage expects to process (0 if unknown)
        migrated: Records migrated so far
        failed: Records failed so far
    """

    stage: str
    processed: int
    total: int
    migrated: int
    failed: int

    @property
    def progress_percent(self) -> float:
        if self.total == 0:
            return 0.0
        return min(100.0, self.processed / self.total * 100)


ProgressCallback = Callable[[ProgressEvent], None]


def legacy_timestamps(
    created: datetime | None, updated: datetime | None
) -> dict[str, datetime]:
    """
    Keyword arguments carrying legacy timestamps onto a canonical document.

    A missing ``updated`` falls back to ``created``; when both are missing the
    document keeps its own defaults.
    """
    values: dict[str, datetime] = {}
    if created is not None:
        values["created_at"] = created
    if updated is not None:
        values["updated_at"] = updated
    elif created is not None:
        values["updated_at"] = created
    return values


def emit_progress(
    callback: ProgressCallback | None, result: MigrationResult, expected: int
) -> None:
    logger.debug(
        "%s progress: %d/%d (%d failed)", result.stage, result.total, expected, result.failed
    )
    if callback is None:
        return
    callback(
        ProgressEvent(
            stage=result.stage,
            processed=result.total,
            total=expected,
            migrated=result.migrated,
            failed=result.failed,
        )
    )


async def run_bounded(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[RecordOutcome]],
    *,
    concurrency: int,
    entity_type: str,
    legacy_id: Callable[[T], int | None],
) -> list[RecordOutcome]:
    """
    Run ``worker`` over ``items`` with at most ``concurrency`` in flight.

    Outcomes come back in input order. A MissingReferenceError becomes a
    skipped outcome and any other non-fatal exception a failed one;
    FatalMigrationError propagates.
    """
    semaphore = asyncio.Semaphore(concurrency)

    async def guarded(item: T) -> RecordOutcome:
        async with semaphore:
            try:
                return await worker(item)
            except FatalMigrationError:
                raise
            except MissingReferenceError as e:
                return RecordOutcome.skipped(e.legacy_id, warning=str(e))
            except NovelSyncError as e:
                logger.log(e.severity.log_level, "%s", e)
                return RecordOutcome.failed(legacy_id(item), str(e))
            except Exception as e:
                record_id = legacy_id(item)
                logger.error("Failed to migrate %s %s: %s", entity_type, record_id, e)
                return RecordOutcome.failed(
                    record_id, f"Failed to migrate {entity_type} {record_id}: {e}"
                )

    return list(await asyncio.gather(*(guarded(item) for item in items)))


async def run_paginated(
    result: MigrationResult,
    *,
    expected: int,
    fetch: Callable[[int, int], Awaitable[Sequence[T]]],
    worker: Callable[[T], Awaitable[RecordOutcome]],
    batch_size: int,
    concurrency: int,
    entity_type: str,
    legacy_id: Callable[[T], int | None],
    keep: Callable[[T], bool] | None = None,
    progress_callback: ProgressCallback | None = None,
    tracer: Tracer | None = None,
) -> MigrationResult:
    """
    Page through ``expected`` legacy records and migrate each page.

    ``fetch(limit, offset)`` reads one page. A page that cannot be read is
    counted as failed in full and the loop moves on to the next page.
    ``keep`` filters records that need no work before they are counted.
    """
    tracer = tracer or NullTracer()
    offset = 0
    while offset < expected:
        limit = min(batch_size, expected - offset)
        with tracer.span(
            f"novelsync.{entity_type}.batch",
            {ATTR_ENTITY_TYPE: entity_type, ATTR_BATCH_OFFSET: offset, ATTR_BATCH_SIZE: limit},
        ):
            try:
                batch = await fetch(limit, offset)
            except FatalMigrationError:
                raise
            except Exception as e:
                logger.error("Failed to fetch %s batch at offset %d: %s", entity_type, offset, e)
                result.fail_batch(
                    limit, f"Failed to fetch {entity_type} records {offset}-{offset + limit}: {e}"
                )
                offset += limit
                continue
            if not batch:
                break
            selected = [item for item in batch if keep(item)] if keep else list(batch)
            result.record_all(
                await run_bounded(
                    selected,
                    worker,
                    concurrency=concurrency,
                    entity_type=entity_type,
                    legacy_id=legacy_id,
                )
            )
        offset += len(batch)
        emit_progress(progress_callback, result, expected)
    return result


__all__ = [
    "MigrationResult",
    "ProgressCallback",
    "ProgressEvent",
    "RecordOutcome",
    "RecordStatus",
    "emit_progress",
    "legacy_timestamps",
    "run_bounded",
    "run_paginated",
]
