"""
Migration orchestrator.

Runs the stages in dependency order:

    Taxonomy -> Content -> Users -> Ratings -> Bookmarks -> Comments
    -> ReadingLists -> StatsReconciliation

and, when asked to, a full search index rebuild at the end. Each stage is a
re-runnable unit: a stage that blows up is recorded as failed and the run
moves on, except for fatal errors, which abort the run.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from novelsync.cache import NovelCache
from novelsync.config import MigrationConfig, Stage
from novelsync.documents.dry_run import DryRunDocumentStore
from novelsync.documents.interface import DocumentStore
from novelsync.documents.models import Novel, User
from novelsync.exceptions import ConfigurationError, FatalMigrationError
from novelsync.identity import IdentifierMap, TaxonomyMapping
from novelsync.legacy.interface import LegacySource
from novelsync.migration.base import MigrationResult, ProgressCallback
from novelsync.migration.content import ContentMigrator
from novelsync.migration.reading_lists import ReadingListMigrator
from novelsync.migration.social import SocialDataMigrator
from novelsync.migration.stats import StatsReconciler
from novelsync.observability import Tracer, create_tracer
from novelsync.observability.attributes import (
    ATTR_DRY_RUN,
    ATTR_RECORDS_FAILED,
    ATTR_RECORDS_MIGRATED,
    ATTR_STAGE,
)
from novelsync.search.dry_run import DryRunSearchIndex
from novelsync.search.interface import SearchIndex
from novelsync.sync.cursors import CursorRepository, InMemoryCursorRepository
from novelsync.sync.synchronizer import IncrementalIndexSynchronizer, SyncReport
from novelsync.taxonomy.migrator import TaxonomyMigrator

logger = logging.getLogger(__name__)


@dataclass
class PipelineReport:
    """
    Outcome of a full pipeline run.

    Attributes:
        stages: Results of the stages that ran, in run order
        skipped: Stages that were disabled
        sync: Report of the index rebuild, if one ran
        dry_run: Whether writes were suppressed
    """

    stages: list[MigrationResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    sync: SyncReport | None = None
    dry_run: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def success(self) -> bool:
        return all(stage.success for stage in self.stages)

    @property
    def duration_seconds(self) -> float:
        end = self.completed_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    def stage(self, name: str) -> MigrationResult | None:
        for result in self.stages:
            if result.stage == name:
                return result
        return None

    def summary(self) -> str:
        lines = [result.summary() for result in self.stages]
        if self.skipped:
            lines.append(f"skipped: {', '.join(self.skipped)}")
        if self.sync is not None:
            lines.append(f"index sync: {self.sync.processed}")
        prefix = "[dry run] " if self.dry_run else ""
        lines.append(f"{prefix}completed in {self.duration_seconds:.1f}s")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "dry_run": self.dry_run,
            "stages": [result.to_dict() for result in self.stages],
            "skipped": list(self.skipped),
            "sync": self.sync.to_dict() if self.sync is not None else None,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class MigrationOrchestrator:
    """
    Runs the whole migration against injected stores.

    In dry-run mode the document store and the search index are wrapped so
    that reads go through and writes are counted but not performed; the
    cache is left alone and sync cursors are not moved.

    Example:
        >>> orchestrator = MigrationOrchestrator(source, store, index=index)
        >>> await orchestrator.preflight()
        >>> report = await orchestrator.run()
        >>> print(report.summary())
    """

    def __init__(
        self,
        source: LegacySource,
        store: DocumentStore,
        *,
        index: SearchIndex | None = None,
        cursors: CursorRepository | None = None,
        cache: NovelCache | None = None,
        config: MigrationConfig | None = None,
        progress_callback: ProgressCallback | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._config = config or MigrationConfig()
        self._source = source
        self._cursors = cursors or InMemoryCursorRepository(tracer=self._tracer)
        self._progress_callback = progress_callback
        if self._config.dry_run:
            self._store: DocumentStore = DryRunDocumentStore(store)
            self._index = DryRunSearchIndex(index) if index is not None else None
            self._cache = None
        else:
            self._store = store
            self._index = index
            self._cache = cache

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def index(self) -> SearchIndex | None:
        return self._index

    def _component_kwargs(self) -> dict[str, Any]:
        return {
            "config": self._config,
            "progress_callback": self._progress_callback,
            "tracer": self._tracer,
        }

    async def preflight(self) -> None:
        """
        Check every configured store is reachable.

        Raises:
            StoreConnectionError: If a store does not answer
        """
        await self._source.ping()
        await self._store.ping()
        if self._index is not None:
            await self._index.ping()
        if self._cache is not None:
            await self._cache.ping()
        logger.info("Preflight passed")

    async def _run_stage(
        self,
        report: PipelineReport,
        stage: Stage,
        run: Callable[[], Awaitable[list[MigrationResult]]],
    ) -> None:
        """Run one stage and record its results, or a failed result if it raised."""
        if not self._config.runs(stage):
            logger.info("Skipping stage %s", stage.value)
            report.skipped.append(stage.value)
            return
        logger.info("Starting stage %s", stage.value)
        with self._tracer.span(
            f"novelsync.pipeline.{stage.name.lower()}",
            {ATTR_STAGE: stage.value, ATTR_DRY_RUN: self._config.dry_run},
        ) as span:
            try:
                results = await run()
            except FatalMigrationError:
                raise
            except Exception as e:
                logger.exception("Stage %s failed", stage.value)
                failed = MigrationResult(stage=stage.value)
                failed.errors.append(f"Stage {stage.value} failed: {e}")
                report.stages.append(failed.complete())
                return
            report.stages.extend(results)
            if span:
                span.set_attribute(ATTR_RECORDS_MIGRATED, sum(r.migrated for r in results))
                span.set_attribute(ATTR_RECORDS_FAILED, sum(r.failed for r in results))
        for result in results:
            logger.info(result.summary())

    async def run(self) -> PipelineReport:
        config = self._config
        report = PipelineReport(dry_run=config.dry_run)
        with self._tracer.span("novelsync.pipeline.run", {ATTR_DRY_RUN: config.dry_run}):
            await self._store.ensure_indexes()

            mapping: TaxonomyMapping | None = None

            async def taxonomy() -> list[MigrationResult]:
                nonlocal mapping
                migrator = TaxonomyMigrator(
                    self._source,
                    self._store,
                    genre_ceiling=config.genre_ceiling,
                    tracer=self._tracer,
                )
                result = await migrator.migrate()
                mapping = result.mapping
                return [result.tags, result.genres]

            await self._run_stage(report, Stage.TAXONOMY, taxonomy)
            if mapping is None:
                mapping = await TaxonomyMapping.from_store(self._store)

            content = ContentMigrator(
                self._source, self._store, mapping, index=self._index, **self._component_kwargs()
            )

            async def novels_stage() -> list[MigrationResult]:
                return [await content.migrate()]

            await self._run_stage(report, Stage.NOVELS, novels_stage)
            novels = await IdentifierMap.build(self._store, Novel)
            for entry in content.novels:
                novels.add(entry.legacy_id, entry.uuid, slug=entry.slug)

            users = await IdentifierMap.build(self._store, User)
            social = SocialDataMigrator(
                self._source, self._store, users=users, novels=novels, **self._component_kwargs()
            )
            await self._run_stage(report, Stage.USERS, self._single(social.migrate_users))
            await self._run_stage(
                report, Stage.RATINGS, self._single(social.migrate_ratings_to_favorites)
            )
            await self._run_stage(
                report, Stage.BOOKMARKS, self._single(social.migrate_bookmarks_to_favorites)
            )
            await self._run_stage(report, Stage.COMMENTS, self._single(social.migrate_comments))

            reading_lists = ReadingListMigrator(
                self._source, self._store, users=users, novels=novels, **self._component_kwargs()
            )
            await self._run_stage(
                report, Stage.READING_LISTS, self._single(reading_lists.migrate_reading_lists)
            )

            reconciler = StatsReconciler(
                self._store, index=self._index, cache=self._cache, **self._component_kwargs()
            )
            await self._run_stage(report, Stage.STATS, self._single(reconciler.reconcile))

            if config.rebuild_index_after_migration or config.reindex_only:
                if self._index is None or not config.search_indexing:
                    logger.warning("Index rebuild requested but search indexing is disabled")
                else:
                    report.sync = await self.rebuild_only()

        report.completed_at = datetime.now(UTC)
        logger.info(
            "Pipeline finished in %.1fs (success=%s)", report.duration_seconds, report.success
        )
        return report

    @staticmethod
    def _single(
        operation: Callable[[], Awaitable[MigrationResult]],
    ) -> Callable[[], Awaitable[list[MigrationResult]]]:
        async def run() -> list[MigrationResult]:
            return [await operation()]

        return run

    def synchronizer(self) -> IncrementalIndexSynchronizer:
        if self._index is None:
            raise ConfigurationError("Search index is not configured", setting="ES_ENABLED")
        return IncrementalIndexSynchronizer(
            self._store,
            self._index,
            self._cursors,
            page_size=self._config.sync_page_size,
            dry_run=self._config.dry_run,
            tracer=self._tracer,
        )

    async def rebuild_only(self, reset: bool = True) -> SyncReport:
        """
        Re-index everything from the document store without migrating.

        Raises:
            ConfigurationError: If no search index is configured
        """
        report = await self.synchronizer().sync_all(reset=reset)
        logger.info("Index rebuild finished: %s", report.processed)
        return report

    async def refresh_covers(self) -> MigrationResult:
        users = await IdentifierMap.build(self._store, User)
        novels = await IdentifierMap.build(self._store, Novel)
        migrator = ReadingListMigrator(
            self._source, self._store, users=users, novels=novels, **self._component_kwargs()
        )
        return await migrator.refresh_covers()


__all__ = ["MigrationOrchestrator", "PipelineReport"]
