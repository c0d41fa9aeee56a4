"""
Command-line entry point.

    novelsync migrate [--skip-<stage> ...] [--dry-run] [--max-novels N] ...
    novelsync sync [--reset-cursors | --full]
    novelsync refresh-covers

Connection settings come from the environment (see
``ConnectionSettings.from_env``); pipeline settings come from the
environment too and are overridden by flags.

Exit codes: 0 when the run completed (per-record failures included), 1 on a
fatal error or a failed index sync, 2 on usage errors.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from collections.abc import AsyncIterator, Sequence
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, replace

import aiosqlite

from novelsync.cache import NovelCache, RedisNovelCache, create_redis_client
from novelsync.config import ConnectionSettings, MigrationConfig, Stage
from novelsync.documents.interface import DocumentStore
from novelsync.documents.mongodb import MongoDocumentStore, create_mongo_client
from novelsync.exceptions import CursorError, FatalMigrationError, SearchIndexError
from novelsync.legacy.interface import LegacySource
from novelsync.legacy.postgresql import PostgreSQLLegacySource, create_legacy_engine
from novelsync.migration.orchestrator import MigrationOrchestrator
from novelsync.search.http import HttpSearchIndex, create_search_client
from novelsync.search.interface import SearchIndex
from novelsync.sync.cursors import (
    CursorRepository,
    RedisCursorRepository,
    SQLiteCursorRepository,
)

logger = logging.getLogger("novelsync")

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


@dataclass
class Runtime:
    """The stores a command runs against."""

    source: LegacySource
    store: DocumentStore
    cursors: CursorRepository
    index: SearchIndex | None = None
    cache: NovelCache | None = None
    cursor_connection: aiosqlite.Connection | None = None

    async def close(self) -> None:
        """Close every store, even when closing an earlier one raises."""
        async with AsyncExitStack() as stack:
            if self.cursor_connection is not None:
                stack.push_async_callback(self.cursor_connection.close)
            if self.cache is not None:
                stack.push_async_callback(self.cache.close)
            if self.index is not None:
                stack.push_async_callback(self.index.close)
            stack.push_async_callback(self.store.close)
            stack.push_async_callback(self.source.close)


@asynccontextmanager
async def open_runtime(
    settings: ConnectionSettings, config: MigrationConfig
) -> AsyncIterator[Runtime]:
    """Connect to every configured store and close them all on exit."""
    engine = create_legacy_engine(
        settings.legacy_url,
        query_timeout=settings.query_timeout,
        ssl=settings.legacy_ssl,
        pool_size=config.concurrency,
    )
    source = PostgreSQLLegacySource(engine, schema=settings.legacy_schema)
    store = MongoDocumentStore(
        create_mongo_client(settings.mongo_uri, timeout_ms=int(settings.query_timeout * 1000)),
        settings.mongo_database,
        max_time_ms=int(settings.query_timeout * 1000),
    )

    index: SearchIndex | None = None
    if settings.search_enabled:
        index = HttpSearchIndex(
            create_search_client(
                settings.search_nodes,
                username=settings.search_username,
                password=settings.search_password,
                timeout=settings.query_timeout,
            )
        )

    cache: NovelCache | None = None
    cursor_connection: aiosqlite.Connection | None = None
    if settings.redis_url:
        redis = create_redis_client(settings.redis_url, socket_timeout=settings.query_timeout)
        cursors: CursorRepository = RedisCursorRepository(redis)
        cache = RedisNovelCache(redis)
    else:
        cursor_connection = await aiosqlite.connect(settings.cursor_db)
        sqlite_cursors = SQLiteCursorRepository(cursor_connection)
        await sqlite_cursors.create_table()
        cursors = sqlite_cursors

    runtime = Runtime(
        source=source,
        store=store,
        cursors=cursors,
        index=index,
        cache=cache,
        cursor_connection=cursor_connection,
    )
    try:
        yield runtime
    finally:
        await runtime.close()


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        default=os.environ.get("NOVELSYNC_LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging level (default: $NOVELSYNC_LOG_LEVEL or INFO)",
    )
    common.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Read everything, write nothing",
    )

    parser = argparse.ArgumentParser(
        prog="novelsync",
        description="Migrate the legacy novel database and keep the search index in sync",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    migrate = commands.add_parser("migrate", parents=[common], help="Run the migration pipeline")
    for stage in Stage.ordered():
        migrate.add_argument(
            f"--skip-{stage.value}",
            dest=f"skip_{stage.name.lower()}",
            action="store_true",
            help=f"Do not run the {stage.value} stage",
        )
    migrate.add_argument(
        "--max-novels", type=int, help="Migrate at most N novels (0: reindex only)"
    )
    migrate.add_argument("--batch-size", type=int, help="Legacy records per page")
    migrate.add_argument("--concurrency", type=int, help="Records processed at once per page")
    migrate.add_argument(
        "--rebuild-only", action="store_true", help="Skip the migration, rebuild the index"
    )
    migrate.add_argument(
        "--rebuild-indices",
        action="store_true",
        default=None,
        help="Rebuild the search index after migrating",
    )

    sync = commands.add_parser("sync", parents=[common], help="Incrementally sync the search index")
    sync.add_argument(
        "--reset-cursors",
        "--full",
        dest="reset_cursors",
        action="store_true",
        help="Reset the cursors and re-index everything",
    )

    commands.add_parser(
        "refresh-covers", parents=[common], help="Recompute reading list cover images"
    )
    return parser


def apply_overrides(config: MigrationConfig, args: argparse.Namespace) -> MigrationConfig:
    """Overlay command-line flags on the environment configuration."""
    changes: dict[str, object] = {}
    if args.dry_run is not None:
        changes["dry_run"] = args.dry_run
    for flag, setting in (
        ("max_novels", "max_novels"),
        ("batch_size", "batch_size"),
        ("concurrency", "concurrency"),
        ("rebuild_indices", "rebuild_index_after_migration"),
    ):
        value = getattr(args, flag, None)
        if value is not None:
            changes[setting] = value
    config = replace(config, **changes) if changes else config
    skipped = [s for s in Stage.ordered() if getattr(args, f"skip_{s.name.lower()}", False)]
    return config.skipping(skipped) if skipped else config


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT)


async def run_command(
    args: argparse.Namespace, settings: ConnectionSettings, config: MigrationConfig
) -> int:
    async with open_runtime(settings, config) as runtime:
        orchestrator = MigrationOrchestrator(
            runtime.source,
            runtime.store,
            index=runtime.index,
            cursors=runtime.cursors,
            cache=runtime.cache,
            config=config,
        )
        await orchestrator.preflight()

        if args.command == "sync" or (args.command == "migrate" and args.rebuild_only):
            reset = args.reset_cursors if args.command == "sync" else True
            try:
                report = await orchestrator.rebuild_only(reset=reset)
            except (SearchIndexError, CursorError) as e:
                logger.error("Index sync failed: %s", e)
                return 1
            print(f"Index sync: {report.processed}")
            return 0

        if args.command == "refresh-covers":
            result = await orchestrator.refresh_covers()
            print(result.summary())
            return 0

        pipeline = await orchestrator.run()
        print(pipeline.summary())
        return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        settings = ConnectionSettings.from_env()
        config = apply_overrides(MigrationConfig.from_env(), args)
        return asyncio.run(run_command(args, settings, config))
    except FatalMigrationError as e:
        logger.error("%s", e)
        action = e.suggested_action or e.classification.suggested_action
        logger.error("Suggested action: %s", action)
        return 1


__all__ = ["Runtime", "apply_overrides", "build_parser", "main", "open_runtime"]
