"""
SQLite Tabular Store

Local stand-in for the warehouse, used for offline runs and the test
suite. Every call opens its own connection, so one store can be shared
by the engine's worker threads. Expiry times are kept in a small
catalog table because SQLite has no table comments.
"""

import logging
import sqlite3
import uuid
from contextlib import closing
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from warehouse_recon.store.base import QueryResult, StoreError, TabularStore
from warehouse_recon.store.query import QueryBuilder

logger = logging.getLogger(__name__)

EXPIRY_CATALOG = "_recon_table_expiry"


class SqliteStore(TabularStore):
    """TabularStore implementation on a SQLite database file."""

    placeholder = "?"

    def __init__(self, path: str = ":memory:", timeout: float = 30.0):
        """
        Initialize the store.

        Args:
            path: Database file; ``:memory:`` gives a private shared-cache
                in-memory database that lives as long as this store
            timeout: Seconds to wait on a locked database
        """
        self.timeout = timeout
        self._keeper = None

        if path == ":memory:":
            self.path = f"file:recon_{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._uri = True
            self._keeper = self._connect()
        else:
            self.path = path
            self._uri = False

        with closing(self._connect()) as conn, conn:
            conn.execute(
                f'CREATE TABLE IF NOT EXISTS "{EXPIRY_CATALOG}" '
                "(table_name TEXT PRIMARY KEY, expires_at TEXT)"
            )

        logger.debug(f"SqliteStore opened at {path}")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(
            self.path,
            timeout=self.timeout,
            uri=self._uri,
            check_same_thread=False
        )

    def execute_query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        logger.debug(f"SQL: {sql}")
        try:
            with closing(self._connect()) as conn:
                cursor = conn.execute(sql, tuple(params or ()))
                columns = [column[0] for column in cursor.description or ()]
                rows = [dict(zip(columns, values)) for values in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StoreError(str(e), e)
        return QueryResult(columns=columns, rows=rows)

    def create_table(self, name: str, fields: Sequence[str], ttl: Optional[timedelta] = None) -> None:
        qb = QueryBuilder(self.placeholder)
        columns = ", ".join(f"{qb.ident(field)} TEXT" for field in fields)
        expires_at = (datetime.now(timezone.utc) + ttl).isoformat() if ttl is not None else None

        try:
            with closing(self._connect()) as conn, conn:
                conn.execute(f"CREATE TABLE {qb.relation(name)} ({columns})")
                conn.execute(
                    f'INSERT OR REPLACE INTO "{EXPIRY_CATALOG}" VALUES (?, ?)',
                    (self._bare_name(name), expires_at)
                )
        except sqlite3.Error as e:
            raise StoreError(str(e), e)

        logger.info(f"Created relation {name} with {len(fields)} fields")

    def insert_rows(self, name: str, rows: Sequence[Dict[str, Optional[str]]]) -> int:
        if not rows:
            return 0

        qb = QueryBuilder(self.placeholder)
        fields = sorted({field for row in rows for field in row})
        columns = ", ".join(qb.ident(field) for field in fields)
        placeholders = ", ".join(self.placeholder for _ in fields)
        sql = f"INSERT INTO {qb.relation(name)} ({columns}) VALUES ({placeholders})"

        try:
            # The connection context manager commits, or rolls back every row
            with closing(self._connect()) as conn, conn:
                conn.executemany(sql, [tuple(row.get(field) for field in fields) for row in rows])
        except sqlite3.Error as e:
            raise StoreError(str(e), e)

        logger.debug(f"Inserted {len(rows)} rows into {name}")
        return len(rows)

    def table_exists(self, name: str) -> bool:
        result = self.execute_query(
            "SELECT COUNT(*) AS present FROM sqlite_master WHERE type = 'table' AND name = ?",
            [self._bare_name(name)]
        )
        return result.scalar("present", 0) > 0

    def delete_table(self, name: str) -> None:
        qb = QueryBuilder(self.placeholder)
        try:
            with closing(self._connect()) as conn, conn:
                conn.execute(f"DROP TABLE IF EXISTS {qb.relation(name)}")
                conn.execute(
                    f'DELETE FROM "{EXPIRY_CATALOG}" WHERE table_name = ?',
                    (self._bare_name(name),)
                )
        except sqlite3.Error as e:
            raise StoreError(str(e), e)
        logger.info(f"Dropped relation {name}")

    def list_tables(self, prefix: str) -> List[str]:
        schema, _, table_prefix = prefix.rpartition(".")
        result = self.execute_query("SELECT name FROM sqlite_master WHERE type = 'table'")
        names = [name for name in result.column_values("name") if name.startswith(table_prefix)]
        return sorted(f"{schema}.{name}" if schema else name for name in names)

    def expires_at(self, name: str) -> Optional[datetime]:
        """Recorded expiry time of a relation, if any."""
        value = self.execute_query(
            f'SELECT expires_at FROM "{EXPIRY_CATALOG}" WHERE table_name = ?',
            [self._bare_name(name)]
        ).scalar("expires_at")
        return datetime.fromisoformat(value) if value else None

    def close(self) -> None:
        if self._keeper is not None:
            self._keeper.close()
            self._keeper = None

    @staticmethod
    def _bare_name(name: str) -> str:
        return name.rsplit(".", 1)[-1]
