"""
Shared pytest fixtures for the novelsync tests.

This module provides:
- Legacy source fixtures (empty_source, source)
- Target store fixtures (store, index, cache, cursors)
- SQLite fixtures (sqlite_connection, sqlite_cursors)
- Tracing fixtures (mock_tracer)
- Configuration fixtures (config)

Every fixture is function scoped; tests never share store state.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import aiosqlite
import pytest
import pytest_asyncio

from novelsync.cache import InMemoryNovelCache
from novelsync.config import MigrationConfig
from novelsync.documents.in_memory import InMemoryDocumentStore
from novelsync.legacy.in_memory import InMemoryLegacySource
from novelsync.observability.tracer import MockTracer
from novelsync.search.in_memory import InMemorySearchIndex
from novelsync.sync.cursors import InMemoryCursorRepository, SQLiteCursorRepository
from tests.fixtures import sample_source

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that use an aiosqlite database")


# ============================================================================
# Legacy Source Fixtures
# ============================================================================


@pytest.fixture
def empty_source() -> InMemoryLegacySource:
    """Provide a legacy source with no rows at all."""
    return InMemoryLegacySource()


@pytest.fixture
def source() -> InMemoryLegacySource:
    """
    Provide the sample legacy dataset.

    See ``tests.fixtures.legacy.sample_source`` for its contents.
    """
    return sample_source()


# ============================================================================
# Target Store Fixtures
# ============================================================================


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Provide a fresh in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def index() -> InMemorySearchIndex:
    """Provide a fresh in-memory search index."""
    return InMemorySearchIndex()


@pytest.fixture
def cache() -> InMemoryNovelCache:
    """Provide a novel cache that records invalidations."""
    return InMemoryNovelCache()


@pytest.fixture
def cursors() -> InMemoryCursorRepository:
    """Provide a fresh in-memory cursor repository."""
    return InMemoryCursorRepository(enable_tracing=False)


@pytest.fixture
def config() -> MigrationConfig:
    """
    Provide a configuration with small pages.

    A batch size of 2 makes every stage in the sample dataset span more than
    one page.
    """
    return MigrationConfig(batch_size=2, concurrency=4)


# ============================================================================
# Tracing Fixtures
# ============================================================================


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Provide a tracer that records span names and attributes."""
    return MockTracer()


# ============================================================================
# SQLite Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def sqlite_connection() -> AsyncGenerator[aiosqlite.Connection, None]:
    """
    Provide a raw aiosqlite connection to an in-memory database.

    Yields:
        aiosqlite.Connection: Connection closed after the test
    """
    connection = await aiosqlite.connect(":memory:")
    yield connection
    await connection.close()


@pytest_asyncio.fixture
async def sqlite_cursors(
    sqlite_connection: aiosqlite.Connection,
) -> AsyncGenerator[SQLiteCursorRepository, None]:
    """Provide a SQLiteCursorRepository with its table created."""
    repository = SQLiteCursorRepository(sqlite_connection, enable_tracing=False)
    await repository.create_table()
    yield repository
