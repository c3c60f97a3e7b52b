"""
Warehouse Reconciliation

Reconciles ingested semi-structured records against a warehouse table:
records are flattened, loaded into an expiring staging relation, and
compared with the target on a chosen key (matches, per-field differences,
missing records and duplicate keys on both sides).

Usage:
    from warehouse_recon import ReconciliationEngine, ReconConfig
    from warehouse_recon.store.postgres import PostgresStore

    engine = ReconciliationEngine(PostgresStore(dsn), ReconConfig.load())
    report = engine.reconcile(records, "analytics.customers", "customer_id")
"""

from warehouse_recon.config import ReconConfig
from warehouse_recon.errors import (
    InputValidationError,
    KeyNotCommonError,
    PartialInsertError,
    QueryExecutionError,
    ReconError,
    SchemaAccessError,
    StagingVerificationError,
)
from warehouse_recon.reconciliation.engine import ReconciliationEngine

__all__ = [
    "InputValidationError",
    "KeyNotCommonError",
    "PartialInsertError",
    "QueryExecutionError",
    "ReconConfig",
    "ReconError",
    "ReconciliationEngine",
    "SchemaAccessError",
    "StagingVerificationError",
]

__version__ = "1.0.0"
