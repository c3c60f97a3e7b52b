"""
Tabular Store Interface

Abstract collaborator through which the reconciliation engine talks to
the analytic warehouse. Implementations must be safe to share across
threads: the engine fans out independent read queries concurrently.
"""

import abc
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Iterator, List, Optional, Sequence


class StoreError(Exception):
    """Raised by store implementations; wraps the driver exception text."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


@dataclass
class QueryResult:
    """Rows returned by a query, with column names available even when empty."""

    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    def first(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None

    def scalar(self, column: str, default: Any = None) -> Any:
        """Value of ``column`` in the first row."""
        row = self.first()
        if row is None:
            return default
        value = row.get(column)
        return default if value is None else value

    def column_values(self, column: str) -> List[Any]:
        return [row.get(column) for row in self.rows]


class TabularStore(abc.ABC):
    """Abstract warehouse store."""

    #: Placeholder marker for bound parameters in this driver's paramstyle
    placeholder = "%s"

    #: Longest identifier the store accepts without truncating
    max_identifier_length = 128

    @abc.abstractmethod
    def execute_query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        """Run a read query and return all rows."""

    @abc.abstractmethod
    def create_table(self, name: str, fields: Sequence[str], ttl: Optional[timedelta] = None) -> None:
        """Create a relation whose fields are all nullable text."""

    @abc.abstractmethod
    def insert_rows(self, name: str, rows: Sequence[Dict[str, Optional[str]]]) -> int:
        """
        Insert rows atomically.

        Raises:
            StoreError: If any row is rejected; nothing is inserted then
        """

    @abc.abstractmethod
    def table_exists(self, name: str) -> bool:
        """True if the relation exists."""

    @abc.abstractmethod
    def delete_table(self, name: str) -> None:
        """Drop the relation if it exists."""

    @abc.abstractmethod
    def list_tables(self, prefix: str) -> List[str]:
        """Relation ids starting with ``prefix`` (``schema.`` prefixes allowed)."""

    def close(self) -> None:
        """Release any pooled resources."""
