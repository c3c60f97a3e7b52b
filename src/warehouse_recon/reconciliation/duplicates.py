"""
Duplicate Analyzer for Warehouse Reconciliation

Finds key values that occur more than once in a relation. Null keys are
not grouped; they are counted by the key validator instead.

Duplicate analysis is diagnostic: any failure produces a report carrying
the error and a recommendation rather than aborting the run.
"""

import logging
from typing import Any, Dict, List, Optional

from warehouse_recon.config import DuplicateThresholds
from warehouse_recon.errors import ReconError
from warehouse_recon.models import (
    DualDuplicateReport,
    DuplicateReport,
    to_field_value,
    validate_identifier,
    validate_relation_id,
)
from warehouse_recon.store.base import StoreError, TabularStore
from warehouse_recon.store.query import QueryBuilder
from warehouse_recon.utils.concurrency import fan_out

logger = logging.getLogger(__name__)

# Common duplicate keys listed with per-side counts
COMMON_DETAIL_LIMIT = 10


class DuplicateAnalyzer:
    """Duplicate-key detection for one relation or for both sides of a run."""

    def __init__(
        self,
        store: TabularStore,
        thresholds: Optional[DuplicateThresholds] = None,
        key_limit: int = 100,
        row_limit: int = 100,
        max_parallel_queries: int = 4
    ):
        self.store = store
        self.thresholds = thresholds or DuplicateThresholds()
        self.key_limit = key_limit
        self.row_limit = row_limit
        self.max_parallel_queries = max_parallel_queries

    def duplicates(self, relation_id: str, key_field: str, include_rows: bool = False) -> DuplicateReport:
        """
        Analyze duplicate keys in one relation.

        Args:
            relation_id: Relation to analyze
            key_field: Key field to group on
            include_rows: Also fetch up to ``row_limit`` duplicate rows

        Returns:
            DuplicateReport (with ``error`` set if the analysis failed)
        """
        try:
            validate_relation_id(relation_id)
            validate_identifier(key_field, what="key field")

            groups, records = self._aggregate(relation_id, key_field)
            duplicate_keys = self._listing(relation_id, key_field) if groups else []
        except (StoreError, ReconError) as e:
            logger.error(f"Duplicate analysis failed for {relation_id}: {e}")
            return DuplicateReport(
                relation_id=relation_id,
                key_field=key_field,
                recommendations=[f"Duplicate analysis failed: {e}"],
                error=str(e),
            )

        report = DuplicateReport(
            relation_id=relation_id,
            key_field=key_field,
            duplicate_keys=duplicate_keys,
            duplicate_count=groups,
            total_duplicate_records=records - groups,
        )

        if include_rows and duplicate_keys:
            report.duplicate_rows = self._duplicate_rows(relation_id, key_field, duplicate_keys)

        report.recommendations = self.recommendations(report)

        logger.info(
            f"Duplicate analysis of {relation_id}.{key_field}: {report.duplicate_count} duplicate keys, "
            f"{report.total_duplicate_records} excess records"
        )
        return report

    def duplicates_both(self, staging_id: str, target_id: str, key_field: str) -> DualDuplicateReport:
        """
        Run duplicate analysis on staging and target independently.

        Returns:
            DualDuplicateReport with cross-system key partitions
        """
        reports = fan_out(
            {
                "source": lambda: self.duplicates(staging_id, key_field),
                "target": lambda: self.duplicates(target_id, key_field),
            },
            self.max_parallel_queries
        )
        source, target = reports["source"], reports["target"]

        source_counts = source.counts_by_key()
        target_counts = target.counts_by_key()

        common = [key for key in source_counts if key in target_counts]
        dual = DualDuplicateReport(
            source=source,
            target=target,
            common_duplicate_keys=common,
            source_only_duplicate_keys=[key for key in source_counts if key not in target_counts],
            target_only_duplicate_keys=[key for key in target_counts if key not in source_counts],
            common_duplicate_details=[
                {"key": key, "source_count": source_counts[key], "target_count": target_counts[key]}
                for key in common[:COMMON_DETAIL_LIMIT]
            ],
        )
        dual.recommendations = self.dual_recommendations(dual)
        return dual

    def recommendations(self, report: DuplicateReport) -> List[str]:
        """Recommendations for one relation, driven by the configured thresholds."""
        groups = report.duplicate_count

        if groups == 0:
            return ["Perfect data quality - no duplicate primary keys found"]

        if groups <= self.thresholds.acceptable:
            return [
                f"{groups} duplicate key value(s) found, within the acceptable threshold "
                f"of {self.thresholds.acceptable}"
            ]

        recommendations = []
        if groups >= self.thresholds.critical:
            recommendations.append(
                f"Critical: {groups} duplicate key values in {report.relation_id} "
                f"(threshold {self.thresholds.critical})"
            )
        recommendations.extend([
            f"Review source data to understand why {groups} primary key values appear multiple times",
            "Consider using composite keys or additional fields for unique identification",
            "Data pipeline should include deduplication logic before loading",
        ])
        return recommendations

    def dual_recommendations(self, dual: DualDuplicateReport) -> List[str]:
        recommendations = []
        for label, report in (("Source", dual.source), ("Target", dual.target)):
            if report.error:
                recommendations.append(f"{label}: Duplicate analysis failed: {report.error}")

        if dual.summary["both_clean"] and not recommendations:
            return [
                "Excellent data quality - No duplicate keys found in either system",
                "Both source and target have unique key values",
            ]

        if dual.source.has_duplicates:
            recommendations.append(
                f"Source: Found {dual.source.duplicate_count} duplicate key values affecting "
                f"{dual.source.total_duplicate_records} records"
            )
            recommendations.append("Consider implementing deduplication logic in your data source")

        if dual.target.has_duplicates:
            recommendations.append(
                f"Target: Found {dual.target.duplicate_count} duplicate key values affecting "
                f"{dual.target.total_duplicate_records} records"
            )
            recommendations.append("Review the target table loading process to prevent duplicate key insertion")

        if dual.common_duplicate_keys:
            recommendations.append(
                f"Critical: {len(dual.common_duplicate_keys)} duplicate keys exist in BOTH systems"
            )

        return recommendations

    def _aggregate(self, relation_id: str, key_field: str):
        """(duplicate groups, records in those groups)"""
        qb = QueryBuilder(self.store.placeholder)
        key = qb.ident(key_field)
        sql = (
            "SELECT COUNT(*) AS duplicate_groups, COALESCE(SUM(occurrences), 0) AS grouped_records FROM ("
            f"SELECT {key}, COUNT(*) AS occurrences FROM {qb.relation(relation_id)} "
            f"WHERE {key} IS NOT NULL GROUP BY {key} HAVING COUNT(*) > 1) dup"
        )
        result = self.store.execute_query(sql)
        return int(result.scalar("duplicate_groups", 0)), int(result.scalar("grouped_records", 0))

    def _listing(self, relation_id: str, key_field: str) -> List[Dict[str, Any]]:
        qb = QueryBuilder(self.store.placeholder)
        key = qb.ident(key_field)
        sql = (
            f"SELECT {qb.text_cast(key)} AS key_value, COUNT(*) AS occurrences "
            f"FROM {qb.relation(relation_id)} WHERE {key} IS NOT NULL "
            f"GROUP BY {key} HAVING COUNT(*) > 1 "
            f"ORDER BY occurrences DESC, key_value LIMIT {qb.param(self.key_limit)}"
        )
        return [
            {"key": row["key_value"], "count": int(row["occurrences"])}
            for row in self.store.execute_query(sql, qb.params)
        ]

    def _duplicate_rows(
        self,
        relation_id: str,
        key_field: str,
        duplicate_keys: List[Dict[str, Any]]
    ) -> List[Dict[str, Optional[str]]]:
        qb = QueryBuilder(self.store.placeholder)
        key = qb.text_cast(qb.ident(key_field))
        sql = (
            f"SELECT * FROM {qb.relation(relation_id)} "
            f"WHERE {key} IN ({qb.param_list(entry['key'] for entry in duplicate_keys)}) "
            f"ORDER BY {key} LIMIT {qb.param(self.row_limit)}"
        )

        try:
            rows = self.store.execute_query(sql, qb.params).rows
        except StoreError as e:
            logger.warning(f"Could not fetch duplicate rows from {relation_id}: {e}")
            return []

        return [{name: to_field_value(value) for name, value in row.items()} for row in rows]
