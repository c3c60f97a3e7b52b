"""
Pytest configuration and shared fixtures.

Unit tests run against a SQLite-backed store in a temporary directory with
all loader delays set to zero. Integration tests use PostgreSQL and are
skipped unless RECON_TEST_POSTGRES_DSN is set.
"""

import sqlite3

import pytest

from warehouse_recon.config import ReconConfig
from warehouse_recon.store.sqlite import SqliteStore


@pytest.fixture
def config():
    """Engine configuration without sleeps."""
    return ReconConfig(
        inter_batch_delay=0,
        settle_delay=0,
        verify_attempts=2,
        max_parallel_queries=2,
    )


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "warehouse.db")


@pytest.fixture
def store(db_path):
    """SQLite store on a temporary database file."""
    store = SqliteStore(db_path)
    yield store
    store.close()


@pytest.fixture
def make_table(db_path):
    """
    Create a typed table directly in the test database.

    Usage:
        make_table("customers", {"id": "INTEGER", "name": "TEXT"}, [(1, "a"), (2, "b")])
    """
    def _make(name, columns, rows):
        column_sql = ", ".join(f'"{column}" {sql_type}' for column, sql_type in columns.items())
        placeholders = ", ".join("?" for _ in columns)

        conn = sqlite3.connect(db_path)
        try:
            with conn:
                conn.execute(f'CREATE TABLE "{name}" ({column_sql})')
                conn.executemany(f'INSERT INTO "{name}" VALUES ({placeholders})', rows)
        finally:
            conn.close()
        return name

    return _make


def stage_rows(store, name, rows):
    """Create an all-text table from dict rows via the store interface."""
    fields = sorted({field for row in rows for field in row})
    store.create_table(name, fields)
    store.insert_rows(name, [{field: row.get(field) for field in fields} for row in rows])
    return name


@pytest.fixture
def staged(store):
    """Factory for all-text relations (shaped like staging relations)."""
    def _staged(name, rows):
        return stage_rows(store, name, rows)
    return _staged
