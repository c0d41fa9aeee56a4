"""
Shared pytest fixtures for integration tests.

This module provides PostgreSQL, MongoDB and Redis test infrastructure using
testcontainers for automatic container management. Containers are started
once per session; every test gets a freshly seeded legacy schema, its own
MongoDB database and an empty Redis database.

If testcontainers or Docker is not available, tests are automatically skipped.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Generator
from dataclasses import asdict
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import pytest
import pytest_asyncio

from tests.fixtures import sample_source

if TYPE_CHECKING:
    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncEngine

    from novelsync.documents.mongodb import MongoDocumentStore


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for integration tests."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require docker)"
    )
    config.addinivalue_line("markers", "postgres: marks tests that require PostgreSQL")
    config.addinivalue_line("markers", "mongodb: marks tests that require MongoDB")
    config.addinivalue_line("markers", "redis: marks tests that require Redis")


# ============================================================================
# Testcontainers Detection
# ============================================================================

TESTCONTAINERS_AVAILABLE = False

try:
    from testcontainers.mongodb import MongoDbContainer
    from testcontainers.postgres import PostgresContainer
    from testcontainers.redis import RedisContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    MongoDbContainer = None  # type: ignore[assignment, misc]
    PostgresContainer = None  # type: ignore[assignment, misc]
    RedisContainer = None  # type: ignore[assignment, misc]


def is_docker_available() -> bool:
    """Check if Docker is available for running containers."""
    import subprocess

    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


DOCKER_AVAILABLE = is_docker_available()


# ============================================================================
# PostgreSQL Fixtures
# ============================================================================

LEGACY_SCHEMA = "legacy"

LEGACY_SCHEMA_STATEMENTS = [
    f"DROP SCHEMA IF EXISTS {LEGACY_SCHEMA} CASCADE",
    f"CREATE SCHEMA {LEGACY_SCHEMA}",
    f"CREATE TABLE {LEGACY_SCHEMA}.tags (id INTEGER PRIMARY KEY, name VARCHAR(255))",
    f"CREATE TABLE {LEGACY_SCHEMA}.genres (id INTEGER PRIMARY KEY, name VARCHAR(255))",
    f"""
    CREATE TABLE {LEGACY_SCHEMA}.novels (
        id INTEGER PRIMARY KEY,
        name VARCHAR(255),
        slug VARCHAR(255),
        status VARCHAR(50),
        description TEXT,
        author_id INTEGER,
        thumbnail TEXT,
        cover TEXT,
        rating DOUBLE PRECISION,
        bookmarkcount INTEGER,
        views INTEGER DEFAULT 0,
        tags JSONB,
        genres JSONB,
        source JSONB,
        published BOOLEAN DEFAULT true,
        created_at TIMESTAMPTZ,
        updated_at TIMESTAMPTZ,
        deleted_at TIMESTAMPTZ
    )
    """,
    f"""
    CREATE TABLE {LEGACY_SCHEMA}.chapters (
        id INTEGER PRIMARY KEY,
        novel_id INTEGER,
        chapter_number INTEGER,
        chapter_title VARCHAR(255),
        content TEXT,
        created_at TIMESTAMPTZ,
        updated_at TIMESTAMPTZ
    )
    """,
    f"""
    CREATE TABLE {LEGACY_SCHEMA}.users (
        id INTEGER PRIMARY KEY,
        name VARCHAR(255),
        email VARCHAR(255),
        password TEXT,
        email_verified BOOLEAN,
        image TEXT,
        bookmarks JSONB,
        created_at TIMESTAMPTZ,
        updated_at TIMESTAMPTZ,
        deleted_at TIMESTAMPTZ
    )
    """,
    f"""
    CREATE TABLE {LEGACY_SCHEMA}.ratings (
        id INTEGER PRIMARY KEY,
        novel_id INTEGER,
        user_id INTEGER,
        rating INTEGER,
        created_at TIMESTAMPTZ,
        updated_at TIMESTAMPTZ
    )
    """,
    f"""
    CREATE TABLE {LEGACY_SCHEMA}.comments (
        id INTEGER PRIMARY KEY,
        user_id INTEGER,
        novel_id INTEGER,
        chapter_id INTEGER,
        content TEXT,
        parent_id INTEGER,
        likes INTEGER,
        created_at TIMESTAMPTZ,
        updated_at TIMESTAMPTZ
    )
    """,
    f"""
    CREATE TABLE {LEGACY_SCHEMA}.reading_lists (
        id INTEGER PRIMARY KEY,
        user_id INTEGER,
        name VARCHAR(255),
        description TEXT,
        is_public BOOLEAN,
        created_at TIMESTAMPTZ,
        updated_at TIMESTAMPTZ
    )
    """,
    f"""
    CREATE TABLE {LEGACY_SCHEMA}.reading_list_items (
        id INTEGER PRIMARY KEY,
        reading_list_id INTEGER,
        novel_id INTEGER,
        added_at TIMESTAMPTZ
    )
    """,
]

JSON_COLUMNS = frozenset({"tags", "genres", "source", "bookmarks"})


def sample_rows() -> dict[str, list[dict[str, Any]]]:
    """The sample dataset as legacy table rows."""
    source = sample_source()
    novels = []
    for novel in source.novels:
        row = asdict(novel)
        row["bookmarkcount"] = row.pop("bookmark_count")
        for column in ("tags", "genres", "source"):
            row[column] = json.dumps(list(row[column]))
        novels.append(row)
    return {
        "tags": [asdict(tag) for tag in source.tags],
        "genres": [asdict(genre) for genre in source.genres],
        "novels": novels,
        "chapters": [asdict(chapter) for chapter in source.chapters],
        "users": [asdict(user) for user in source.users],
        "ratings": [asdict(rating) for rating in source.ratings],
        "comments": [asdict(comment) for comment in source.comments],
        "reading_lists": [asdict(reading_list) for reading_list in source.reading_lists],
        "reading_list_items": [asdict(item) for item in source.reading_list_items],
    }


def insert_statement(table: str, columns: list[str]) -> str:
    values = ", ".join(
        f"CAST(:{column} AS jsonb)" if column in JSON_COLUMNS else f":{column}"
        for column in columns
    )
    return f"INSERT INTO {LEGACY_SCHEMA}.{table} ({', '.join(columns)}) VALUES ({values})"


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    Provide PostgreSQL container for integration tests.

    Container is shared across all tests in the session for efficiency.
    """
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("PostgreSQL testcontainer not available")

    container = PostgresContainer("postgres:15")
    container.start()

    yield container

    container.stop()


@pytest.fixture(scope="session")
def postgres_connection_url(postgres_container: Any) -> str:
    """Get PostgreSQL connection URL from container."""
    # testcontainers returns psycopg2 URL, convert to asyncpg
    url = postgres_container.get_connection_url()
    return url.replace("postgresql://", "postgresql+asyncpg://").replace("psycopg2", "asyncpg")


@pytest_asyncio.fixture
async def legacy_engine(postgres_connection_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """
    Provide an engine on a legacy schema seeded with the sample dataset.

    The schema is dropped and recreated for every test.
    """
    from sqlalchemy import text

    from novelsync.legacy.postgresql import create_legacy_engine

    engine = create_legacy_engine(postgres_connection_url, query_timeout=30.0)
    async with engine.begin() as conn:
        for statement in LEGACY_SCHEMA_STATEMENTS:
            await conn.execute(text(statement))
        for table, rows in sample_rows().items():
            if rows:
                await conn.execute(text(insert_statement(table, list(rows[0]))), rows)

    yield engine

    await engine.dispose()


# ============================================================================
# MongoDB Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def mongodb_container() -> Generator[Any, None, None]:
    """Provide MongoDB container for integration tests."""
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("MongoDB testcontainer not available")

    container = MongoDbContainer("mongo:7")
    container.start()

    yield container

    container.stop()


@pytest.fixture(scope="session")
def mongodb_connection_url(mongodb_container: Any) -> str:
    return mongodb_container.get_connection_url()


@pytest_asyncio.fixture
async def mongo_store(mongodb_connection_url: str) -> AsyncGenerator[MongoDocumentStore, None]:
    """
    Provide a MongoDocumentStore on a database of its own.

    The database is dropped after the test.
    """
    from novelsync.documents.mongodb import MongoDocumentStore, create_mongo_client

    client = create_mongo_client(mongodb_connection_url)
    database = f"novelsync_test_{uuid4().hex[:12]}"
    store = MongoDocumentStore(client, database, enable_tracing=False)
    await store.ensure_indexes()

    yield store

    await client.drop_database(database)
    await store.close()


@pytest_asyncio.fixture
async def unindexed_mongo_store(
    mongodb_connection_url: str,
) -> AsyncGenerator[MongoDocumentStore, None]:
    """
    Provide a MongoDocumentStore on a fresh database with no indexes.

    Code under test is responsible for creating them.
    """
    from novelsync.documents.mongodb import MongoDocumentStore, create_mongo_client

    client = create_mongo_client(mongodb_connection_url)
    database = f"novelsync_test_{uuid4().hex[:12]}"
    store = MongoDocumentStore(client, database, enable_tracing=False)

    yield store

    await client.drop_database(database)
    await store.close()


# ============================================================================
# Redis Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def redis_container() -> Generator[Any, None, None]:
    """Provide Redis container for integration tests."""
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("Redis testcontainer not available")

    container = RedisContainer("redis:7-alpine")
    container.start()

    yield container

    container.stop()


@pytest.fixture(scope="session")
def redis_connection_url(redis_container: Any) -> str:
    """Get Redis connection URL from container."""
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    return f"redis://{host}:{port}/0"


@pytest_asyncio.fixture
async def redis_client(redis_connection_url: str) -> AsyncGenerator[aioredis.Redis, None]:
    """Provide a Redis client on an emptied database."""
    from novelsync.cache import create_redis_client

    client = create_redis_client(redis_connection_url)
    await client.flushdb()

    yield client

    await client.flushdb()
    await client.aclose()
