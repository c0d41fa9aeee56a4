"""
Runtime configuration.

Two dataclasses: ``ConnectionSettings`` (where the stores live) and
``MigrationConfig`` (how the pipeline behaves). Both can be built from the
environment; the CLI overrides individual fields from its flags. Invalid
values raise ConfigurationError, which is fatal.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum

from sqlalchemy.engine import URL

from novelsync.exceptions import ConfigurationError

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


class Stage(Enum):
    """
    Pipeline stages, in execution order.

    Each member's value doubles as its ``--skip-*`` suffix in the CLI.
    """

    TAXONOMY = "taxonomy"
    """Tags and genres."""

    NOVELS = "novels"
    """Novels and their chapters."""

    USERS = "users"
    """User accounts."""

    RATINGS = "ratings"
    """High ratings converted to favorites."""

    BOOKMARKS = "bookmarks"
    """Per-user bookmark lists converted to favorites."""

    COMMENTS = "comments"
    """Novel-level comments."""

    READING_LISTS = "reading-lists"
    """Reading lists and their items."""

    STATS = "stats"
    """Chapter count and word count reconciliation."""

    @classmethod
    def ordered(cls) -> list[Stage]:
        return list(cls)


def _env(env: Mapping[str, str], key: str, default: str = "") -> str:
    return env.get(key, default).strip()


def _env_bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{key} must be a boolean, got {raw!r}", setting=key)


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = _env_optional_int(env, key)
    return default if value is None else value


def _env_optional_int(env: Mapping[str, str], key: str) -> int | None:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}", setting=key) from e


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as e:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}", setting=key) from e


@dataclass(frozen=True)
class ConnectionSettings:
    """
    Connection settings for every external store.

    Attributes:
        legacy_url: SQLAlchemy URL of the legacy PostgreSQL database
        legacy_schema: Schema holding the legacy tables
        legacy_ssl: Require TLS towards PostgreSQL
        mongo_uri: MongoDB connection string
        mongo_database: MongoDB database name
        search_enabled: Whether the search index is written at all
        search_nodes: Comma-separated search node URLs
        search_username: Basic auth user for the search cluster
        search_password: Basic auth password for the search cluster
        redis_url: Redis URL for cursors and cache invalidation (optional)
        cursor_db: SQLite file for cursors when Redis is not configured
        query_timeout: Per-call timeout in seconds for every store
    """

    legacy_url: str
    mongo_uri: str
    mongo_database: str
    legacy_schema: str = "public"
    legacy_ssl: bool = False
    search_enabled: bool = False
    search_nodes: str = "http://localhost:9200"
    search_username: str | None = None
    search_password: str | None = None
    redis_url: str | None = None
    cursor_db: str = "novelsync-cursors.db"
    query_timeout: float = 60.0

    def __post_init__(self) -> None:
        if not self.legacy_url:
            raise ConfigurationError(
                "Legacy database is not configured (set LEGACY_DATABASE_URL or PG_HOST)",
                setting="PG_HOST",
            )
        if not self.mongo_uri:
            raise ConfigurationError("MONGO_URI is required", setting="MONGO_URI")
        if not self.mongo_database:
            raise ConfigurationError("MONGO_DATABASE is required", setting="MONGO_DATABASE")
        if self.search_enabled and not self.search_nodes:
            raise ConfigurationError("ES_NODES is required when ES_ENABLED", setting="ES_NODES")
        if self.query_timeout <= 0:
            raise ConfigurationError(
                "QUERY_TIMEOUT_SECONDS must be positive", setting="QUERY_TIMEOUT_SECONDS"
            )

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ConnectionSettings:
        """
        Read connection settings from environment variables.

        ``LEGACY_DATABASE_URL`` wins over the individual ``PG_*`` variables.
        """
        env = os.environ if env is None else env
        legacy_url = _env(env, "LEGACY_DATABASE_URL")
        if not legacy_url and _env(env, "PG_HOST"):
            legacy_url = URL.create(
                "postgresql+asyncpg",
                username=_env(env, "PG_USERNAME") or None,
                password=env.get("PG_PASSWORD") or None,
                host=_env(env, "PG_HOST"),
                port=_env_int(env, "PG_PORT", 5432),
                database=_env(env, "PG_DATABASE") or None,
            ).render_as_string(hide_password=False)

        return cls(
            legacy_url=legacy_url,
            legacy_schema=_env(env, "PG_SCHEMA", "public") or "public",
            legacy_ssl=_env_bool(env, "PG_SSL"),
            mongo_uri=_env(env, "MONGO_URI"),
            mongo_database=_env(env, "MONGO_DATABASE"),
            search_enabled=_env_bool(env, "ES_ENABLED"),
            search_nodes=_env(env, "ES_NODES", "http://localhost:9200"),
            search_username=_env(env, "ES_USERNAME") or None,
            search_password=env.get("ES_PASSWORD") or None,
            redis_url=_env(env, "REDIS_URL") or None,
            cursor_db=_env(env, "SYNC_CURSOR_DB", "novelsync-cursors.db"),
            query_timeout=_env_float(env, "QUERY_TIMEOUT_SECONDS", 60.0),
        )


@dataclass
class MigrationConfig:
    """
    Pipeline behaviour.

    Attributes:
        batch_size: Legacy records fetched per page
        max_novels: Cap on novels migrated; None means all, 0 skips the
            content migration and only reindexes
        dry_run: Suppress every write to the document store and index
        concurrency: Upper bound on records processed at once within a batch
        skip_stages: Stages that are not run
        search_indexing: Push migrated novels and chapters to the index
        rebuild_index_after_migration: Run a full index sync at the end
        favorite_rating_threshold: Minimum rating converted to a favorite
        cover_sample_size: Cover images sampled per reading list
        genre_ceiling: Maximum number of distinct canonical genres
        sync_page_size: Records per page during index synchronization
    """

    batch_size: int = 100
    max_novels: int | None = None
    dry_run: bool = False
    concurrency: int = 8
    skip_stages: frozenset[Stage] = field(default_factory=frozenset)
    search_indexing: bool = True
    rebuild_index_after_migration: bool = False
    favorite_rating_threshold: int = 4
    cover_sample_size: int = 4
    genre_ceiling: int = 50
    sync_page_size: int = 500

    def __post_init__(self) -> None:
        self.skip_stages = frozenset(self.skip_stages)
        checks = {
            "batch_size": self.batch_size,
            "concurrency": self.concurrency,
            "cover_sample_size": self.cover_sample_size,
            "genre_ceiling": self.genre_ceiling,
            "sync_page_size": self.sync_page_size,
        }
        for name, value in checks.items():
            if value < 1:
                raise ConfigurationError(f"{name} must be at least 1, got {value}", setting=name)
        if self.max_novels is not None and self.max_novels < 0:
            raise ConfigurationError(
                f"max_novels must not be negative, got {self.max_novels}", setting="max_novels"
            )
        if not 1 <= self.favorite_rating_threshold <= 5:
            raise ConfigurationError(
                "favorite_rating_threshold must be between 1 and 5",
                setting="favorite_rating_threshold",
            )

    @property
    def reindex_only(self) -> bool:
        """True when content migration is disabled via ``max_novels == 0``."""
        return self.max_novels == 0

    def runs(self, stage: Stage) -> bool:
        return stage not in self.skip_stages

    def skipping(self, stages: Iterable[Stage]) -> MigrationConfig:
        """Return a copy with additional stages skipped."""
        return replace(self, skip_stages=self.skip_stages | frozenset(stages))

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> MigrationConfig:
        env = os.environ if env is None else env
        skip: set[Stage] = set()
        if _env_bool(env, "MIGRATION_SKIP_TAXONOMY"):
            skip.add(Stage.TAXONOMY)
        return cls(
            batch_size=_env_int(env, "MIGRATION_BATCH_SIZE", 100),
            max_novels=_env_optional_int(env, "MIGRATION_MAX_NOVELS"),
            dry_run=_env_bool(env, "MIGRATION_DRY_RUN"),
            concurrency=_env_int(env, "MIGRATION_CONCURRENCY", 8),
            skip_stages=frozenset(skip),
            search_indexing=_env_bool(env, "ES_ENABLED", True),
            rebuild_index_after_migration=_env_bool(env, "MIGRATION_REBUILD_INDICES"),
            sync_page_size=_env_int(env, "INDEXER_BATCH_SIZE", 500),
        )


__all__ = ["ConnectionSettings", "MigrationConfig", "Stage"]
