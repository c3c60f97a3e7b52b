"""
Key Validator for Warehouse Reconciliation

Checks that the requested join key exists on both sides and gathers key
statistics for each relation. Non-unique keys are accepted here; they are
reported by the duplicate analyzer.
"""

import logging
from typing import Optional, Sequence

from warehouse_recon.errors import KeyNotCommonError, classify_store_error
from warehouse_recon.models import (
    KeyStats,
    RelationKeyStats,
    SchemaDescriptor,
    validate_identifier,
)
from warehouse_recon.reconciliation.schema import is_key_candidate
from warehouse_recon.store.base import StoreError, TabularStore
from warehouse_recon.store.query import QueryBuilder
from warehouse_recon.utils.concurrency import fan_out

logger = logging.getLogger(__name__)


class KeyValidator:
    """Validates the join key and computes per-relation key statistics."""

    def __init__(self, store: TabularStore, max_parallel_queries: int = 4):
        self.store = store
        self.max_parallel_queries = max_parallel_queries

    def validate_key(
        self,
        staging_id: str,
        target_id: str,
        key_field: str,
        common: Sequence[str],
        suggested: Optional[str] = None
    ) -> KeyStats:
        """
        Validate the key and return statistics for both relations.

        Args:
            staging_id: Staging relation id
            target_id: Target relation id
            key_field: Requested join key
            common: Common field names
            suggested: Alternative to offer when the key is rejected
                (defaults to the first key candidate, else the first
                common field)

        Returns:
            KeyStats for source and target

        Raises:
            InputValidationError: If the key is empty or malformed
            KeyNotCommonError: If the key is not a common field
            QueryExecutionError: If a statistics query fails
        """
        validate_identifier(key_field, what="key field")

        if key_field not in common:
            if suggested is None:
                suggested = next(
                    (f for f in common if is_key_candidate(f)),
                    common[0] if common else None
                )
            raise KeyNotCommonError(key_field, suggested, list(common))

        try:
            stats = fan_out(
                {
                    "source": lambda: self.relation_stats(staging_id, key_field),
                    "target": lambda: self.relation_stats(target_id, key_field),
                },
                self.max_parallel_queries
            )
        except StoreError as e:
            raise classify_store_error(e, "Key statistics")

        key_stats = KeyStats(key_field=key_field, source=stats["source"], target=stats["target"])
        logger.info(
            f"Key '{key_field}': source {key_stats.source.total} rows / {key_stats.source.distinct} distinct, "
            f"target {key_stats.target.total} rows / {key_stats.target.distinct} distinct"
        )
        return key_stats

    def validate_against(self, staging_id: str, target_id: str, key_field: str, schema: SchemaDescriptor) -> KeyStats:
        """validate_key using a SchemaDescriptor's common fields and suggestion."""
        return self.validate_key(staging_id, target_id, key_field, schema.common, schema.suggested_key())

    def relation_stats(self, relation_id: str, key_field: str) -> RelationKeyStats:
        """COUNT(*), COUNT(key) and COUNT(DISTINCT key) for one relation."""
        qb = QueryBuilder(self.store.placeholder)
        key = qb.ident(key_field)
        sql = (
            f"SELECT COUNT(*) AS total, COUNT({key}) AS non_null, COUNT(DISTINCT {key}) AS distinct_keys "
            f"FROM {qb.relation(relation_id)}"
        )
        result = self.store.execute_query(sql)
        return RelationKeyStats(
            total=int(result.scalar("total", 0)),
            non_null=int(result.scalar("non_null", 0)),
            distinct=int(result.scalar("distinct_keys", 0)),
        )
