"""
PostgreSQL Tabular Store

Warehouse store backed by psycopg2 with a thread-safe connection pool.
Staging relations are created UNLOGGED with nullable TEXT columns; their
expiry time is recorded as a table comment (``expires_at=<iso>``) since
PostgreSQL has no native table TTL. The staging loader's sweep removes
expired relations.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

import psycopg2
from psycopg2.extras import RealDictCursor, execute_values
from psycopg2.pool import ThreadedConnectionPool

from warehouse_recon.store.base import QueryResult, StoreError, TabularStore
from warehouse_recon.store.query import QueryBuilder

logger = logging.getLogger(__name__)


class PostgresStore(TabularStore):
    """TabularStore implementation for PostgreSQL."""

    placeholder = "%s"
    max_identifier_length = 63

    def __init__(
        self,
        dsn: str,
        min_connections: int = 1,
        max_connections: int = 8,
        statement_timeout_ms: Optional[int] = None
    ):
        """
        Initialize the store.

        Args:
            dsn: libpq connection string or URI
            min_connections: Connections opened eagerly
            max_connections: Upper bound; should be at least the engine's
                max_parallel_queries
            statement_timeout_ms: Optional per-statement timeout
        """
        connect_kwargs = {}
        if statement_timeout_ms:
            connect_kwargs["options"] = f"-c statement_timeout={int(statement_timeout_ms)}"

        try:
            self.pool = ThreadedConnectionPool(
                min_connections,
                max_connections,
                dsn,
                **connect_kwargs
            )
        except psycopg2.Error as e:
            raise StoreError(f"Could not connect to PostgreSQL: {e}", e)

        logger.info(f"PostgresStore initialized (pool {min_connections}-{max_connections})")

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        conn = self.pool.getconn()
        try:
            yield conn
        finally:
            self.pool.putconn(conn)

    def _run(self, statements: Sequence[tuple], fetch: bool = False) -> QueryResult:
        """Execute statements in one transaction; fetch rows of the last one."""
        result = QueryResult()
        with self._connection() as conn:
            try:
                with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                    for sql, params in statements:
                        logger.debug(f"SQL: {sql}")
                        cursor.execute(sql, params)
                    if fetch and cursor.description:
                        result.columns = [column[0] for column in cursor.description]
                        result.rows = [dict(row) for row in cursor.fetchall()]
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                raise StoreError(str(e).strip(), e)
        return result

    def execute_query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        return self._run([(sql, tuple(params) if params else None)], fetch=True)

    def create_table(self, name: str, fields: Sequence[str], ttl: Optional[timedelta] = None) -> None:
        qb = QueryBuilder(self.placeholder)
        relation = qb.relation(name)
        columns = ", ".join(f"{qb.ident(field)} TEXT NULL" for field in fields)

        statements = []
        if "." in name:
            schema = name.rsplit(".", 1)[0]
            statements.append((f"CREATE SCHEMA IF NOT EXISTS {qb.relation(schema)}", None))
        statements.append((f"CREATE UNLOGGED TABLE {relation} ({columns})", None))

        if ttl is not None:
            expires_at = datetime.now(timezone.utc) + ttl
            statements.append((f"COMMENT ON TABLE {relation} IS %s", (f"expires_at={expires_at.isoformat()}",)))

        self._run(statements)
        logger.info(f"Created relation {name} with {len(fields)} fields")

    def insert_rows(self, name: str, rows: Sequence[Dict[str, Optional[str]]]) -> int:
        if not rows:
            return 0

        qb = QueryBuilder(self.placeholder)
        fields = sorted({field for row in rows for field in row})
        columns = ", ".join(qb.ident(field) for field in fields)
        values = [tuple(row.get(field) for field in fields) for row in rows]
        sql = f"INSERT INTO {qb.relation(name)} ({columns}) VALUES %s"

        with self._connection() as conn:
            try:
                with conn.cursor() as cursor:
                    execute_values(cursor, sql, values, page_size=len(values))
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                raise StoreError(str(e).strip(), e)

        logger.debug(f"Inserted {len(values)} rows into {name}")
        return len(values)

    def table_exists(self, name: str) -> bool:
        qb = QueryBuilder(self.placeholder)
        sql = f"SELECT to_regclass({qb.param(qb.relation(name))}) IS NOT NULL AS present"
        return bool(self.execute_query(sql, qb.params).scalar("present", False))

    def delete_table(self, name: str) -> None:
        qb = QueryBuilder(self.placeholder)
        self._run([(f"DROP TABLE IF EXISTS {qb.relation(name)}", None)])
        logger.info(f"Dropped relation {name}")

    def list_tables(self, prefix: str) -> List[str]:
        schema, _, table_prefix = prefix.rpartition(".")
        qb = QueryBuilder(self.placeholder)
        sql = (
            "SELECT table_name FROM information_schema.tables "
            f"WHERE table_schema = {qb.param(schema or 'public')} "
            f"AND table_name LIKE {qb.param(table_prefix + '%')}"
        )
        names = [
            row["table_name"]
            for row in self.execute_query(sql, qb.params)
            if row["table_name"].startswith(table_prefix)
        ]
        return sorted(f"{schema}.{name}" if schema else name for name in names)

    def close(self) -> None:
        self.pool.closeall()
        logger.info("PostgresStore connection pool closed")
