"""
Match Analyzer for Warehouse Reconciliation

Partitions key values into matched, source-only and target-only sets.
Keys are compared as text on both sides, since staging values are always
text while target columns keep their native types.

source_only is exhaustive (the staging relation is bounded by ingestion);
target_only is a capped sample so that a large target relation is never
fully enumerated.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from warehouse_recon.errors import classify_store_error
from warehouse_recon.models import MatchPartition, to_field_value, validate_identifier
from warehouse_recon.store.base import StoreError, TabularStore
from warehouse_recon.store.query import QueryBuilder
from warehouse_recon.utils.concurrency import fan_out

logger = logging.getLogger(__name__)


class MatchAnalyzer:
    """Computes the match partition of key values."""

    def __init__(
        self,
        store: TabularStore,
        target_only_sample_size: int = 10,
        sample_match_limit: int = 5,
        sample_display_fields: int = 3,
        max_parallel_queries: int = 4
    ):
        self.store = store
        self.target_only_sample_size = target_only_sample_size
        self.sample_match_limit = sample_match_limit
        self.sample_display_fields = sample_display_fields
        self.max_parallel_queries = max_parallel_queries

    def match(
        self,
        staging_id: str,
        target_id: str,
        key_field: str,
        display_fields: Optional[Sequence[str]] = None
    ) -> MatchPartition:
        """
        Partition the key values of staging and target.

        Args:
            staging_id: Staging relation id
            target_id: Target relation id
            key_field: Validated common key field
            display_fields: Common fields eligible for the sample display

        Returns:
            MatchPartition

        Raises:
            QueryExecutionError: If a primary query fails
        """
        validate_identifier(key_field, what="key field")

        try:
            results = fan_out(
                {
                    "source_keys": lambda: self.source_keys(staging_id, key_field),
                    "matched": lambda: self.matched_keys(staging_id, target_id, key_field),
                    "target_only": lambda: self.target_only_keys(staging_id, target_id, key_field),
                },
                self.max_parallel_queries
            )
        except StoreError as e:
            raise classify_store_error(e, "Match analysis")

        matched = results["matched"]
        matched_set = set(matched)
        source_only = [key for key in results["source_keys"] if key not in matched_set]

        fields = [f for f in (display_fields or []) if f != key_field][:self.sample_display_fields]
        sample = self.sample_matches(staging_id, target_id, key_field, fields) if matched else []

        logger.info(
            f"Match analysis on '{key_field}': {len(matched)} matched, {len(source_only)} source-only, "
            f"{len(results['target_only'])} target-only (sampled)"
        )

        return MatchPartition(
            key_field=key_field,
            matched=matched,
            source_only=source_only,
            target_only=results["target_only"],
            sample_matches=sample,
        )

    def source_keys(self, staging_id: str, key_field: str) -> List[str]:
        """Distinct non-null staging keys, in text order."""
        qb = QueryBuilder(self.store.placeholder)
        key = qb.text_cast(qb.column("s", key_field))
        sql = (
            f"SELECT DISTINCT {key} AS key_value FROM {qb.relation(staging_id)} s "
            f"WHERE {qb.column('s', key_field)} IS NOT NULL ORDER BY key_value"
        )
        return self.store.execute_query(sql).column_values("key_value")

    def matched_keys(self, staging_id: str, target_id: str, key_field: str) -> List[str]:
        """Staging keys with at least one equal target key, deduplicated."""
        qb = QueryBuilder(self.store.placeholder)
        source_key = qb.text_cast(qb.column("s", key_field))
        target_key = qb.text_cast(qb.column("t", key_field))
        sql = (
            f"SELECT DISTINCT {source_key} AS key_value "
            f"FROM {qb.relation(staging_id)} s JOIN {qb.relation(target_id)} t ON {source_key} = {target_key} "
            f"WHERE {qb.column('s', key_field)} IS NOT NULL ORDER BY key_value"
        )
        return self.store.execute_query(sql).column_values("key_value")

    def target_only_keys(self, staging_id: str, target_id: str, key_field: str) -> List[str]:
        """Sample of target keys absent from staging."""
        qb = QueryBuilder(self.store.placeholder)
        source_key = qb.text_cast(qb.column("s", key_field))
        target_key = qb.text_cast(qb.column("t", key_field))
        sql = (
            f"SELECT DISTINCT {target_key} AS key_value FROM {qb.relation(target_id)} t "
            f"WHERE {qb.column('t', key_field)} IS NOT NULL AND NOT EXISTS ("
            f"SELECT 1 FROM {qb.relation(staging_id)} s WHERE {source_key} = {target_key}) "
            f"ORDER BY key_value LIMIT {qb.param(self.target_only_sample_size)}"
        )
        return self.store.execute_query(sql, qb.params).column_values("key_value")

    def sample_matches(
        self,
        staging_id: str,
        target_id: str,
        key_field: str,
        fields: Sequence[str]
    ) -> List[Dict[str, Any]]:
        """
        A few matched rows for display.

        Returns:
            [{"key": ..., "source": {field: value}, "target": {field: value}}];
            empty if the sample query fails
        """
        qb = QueryBuilder(self.store.placeholder)
        source_key = qb.text_cast(qb.column("s", key_field))
        target_key = qb.text_cast(qb.column("t", key_field))

        columns = [f"{source_key} AS key_value"]
        for index, name in enumerate(fields):
            columns.append(f"{qb.column('s', name)} AS source_{index}")
            columns.append(f"{qb.column('t', name)} AS target_{index}")

        sql = (
            f"SELECT {', '.join(columns)} "
            f"FROM {qb.relation(staging_id)} s JOIN {qb.relation(target_id)} t ON {source_key} = {target_key} "
            f"ORDER BY key_value LIMIT {qb.param(self.sample_match_limit)}"
        )

        try:
            rows = self.store.execute_query(sql, qb.params).rows
        except StoreError as e:
            logger.warning(f"Could not fetch sample matches: {e}")
            return []

        return [
            {
                "key": row["key_value"],
                "source": {name: to_field_value(row[f"source_{i}"]) for i, name in enumerate(fields)},
                "target": {name: to_field_value(row[f"target_{i}"]) for i, name in enumerate(fields)},
            }
            for row in rows
        ]
