"""Warehouse store abstraction and implementations."""

from warehouse_recon.store.base import QueryResult, StoreError, TabularStore
from warehouse_recon.store.query import QueryBuilder
from warehouse_recon.store.sqlite import SqliteStore

__all__ = [
    "QueryBuilder",
    "QueryResult",
    "SqliteStore",
    "StoreError",
    "TabularStore",
]
