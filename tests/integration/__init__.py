"""
Integration tests for novelsync.

The store tests require actual PostgreSQL, MongoDB and Redis instances,
provisioned through testcontainers. Tests are skipped automatically if
Docker or testcontainers is not available. The pipeline tests run on the
in-memory stores and need no infrastructure.

Run integration tests:
    pytest tests/integration/ -v

Run only PostgreSQL tests:
    pytest tests/integration/ -v -m postgres

Skip integration tests:
    pytest tests/ -v -m "not integration"
"""
