"""
Field Differ for Warehouse Reconciliation

Compares the values of selected common fields for a sample of matched
keys. Values are text-cast on both sides and compared in Python: a pair
differs when exactly one side is null, or both are non-null and their
text differs.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from warehouse_recon.config import DEFAULT_FREE_TEXT_MARKERS
from warehouse_recon.errors import ReconError
from warehouse_recon.models import FieldDiffAnalysis, FieldDifference
from warehouse_recon.store.base import StoreError, TabularStore
from warehouse_recon.store.query import QueryBuilder
from warehouse_recon.utils.concurrency import fan_out

logger = logging.getLogger(__name__)


def values_differ(source_value: Optional[str], target_value: Optional[str]) -> bool:
    """
    Compare two text-cast values.

    Args:
        source_value: Staging value (text or None)
        target_value: Target value (text or None)

    Returns:
        True if exactly one side is null or the texts differ
    """
    if source_value is None and target_value is None:
        return False
    if source_value is None or target_value is None:
        return True
    return str(source_value) != str(target_value)


class FieldDiffer:
    """
    Per-field value comparison over matched keys.

    A field whose query fails is reported with diff_count=0 and an error
    message; the other fields are still compared.
    """

    def __init__(
        self,
        store: TabularStore,
        field_limit: int = 8,
        key_sample: int = 50,
        row_limit: int = 100,
        sample_diff_limit: int = 3,
        max_field_name_length: int = 50,
        free_text_markers: Sequence[str] = DEFAULT_FREE_TEXT_MARKERS,
        max_parallel_queries: int = 4
    ):
        self.store = store
        self.field_limit = field_limit
        self.key_sample = key_sample
        self.row_limit = row_limit
        self.sample_diff_limit = sample_diff_limit
        self.max_field_name_length = max_field_name_length
        self.free_text_markers = [marker.lower() for marker in free_text_markers]
        self.max_parallel_queries = max_parallel_queries
        logger.debug("Initialized FieldDiffer")

    def select_fields(
        self,
        candidate_fields: Optional[Sequence[str]],
        common: Sequence[str],
        key_field: str
    ) -> List[str]:
        """
        Choose the fields to compare.

        Args:
            candidate_fields: Requested subset (all common fields when None)
            common: Common field names
            key_field: Join key (never compared)

        Returns:
            Up to ``field_limit`` names, in candidate order
        """
        common_set = set(common)
        candidates = common if candidate_fields is None else candidate_fields

        selected = []
        for name in candidates:
            if name == key_field or name not in common_set or name in selected:
                continue
            if len(name) >= self.max_field_name_length:
                logger.debug(f"Skipping field with long name: {name}")
                continue
            if any(marker in name.lower() for marker in self.free_text_markers):
                logger.debug(f"Skipping free-text field: {name}")
                continue
            selected.append(name)

        return selected[:self.field_limit]

    def diff_fields(
        self,
        staging_id: str,
        target_id: str,
        key_field: str,
        matched_keys: Sequence[str],
        candidate_fields: Optional[Sequence[str]],
        common: Sequence[str]
    ) -> FieldDiffAnalysis:
        """
        Compare selected fields over a sample of matched keys.

        Args:
            staging_id: Staging relation id
            target_id: Target relation id
            key_field: Join key
            matched_keys: Keys present on both sides
            candidate_fields: Requested field subset (None for all common)
            common: Common field names

        Returns:
            FieldDiffAnalysis
        """
        fields = self.select_fields(candidate_fields, common, key_field)
        keys = list(matched_keys)[:self.key_sample]

        if not fields:
            return FieldDiffAnalysis(fields=[], records_analyzed=len(keys), summary="No comparable fields selected")

        if not keys:
            return FieldDiffAnalysis(
                fields=[FieldDifference(field=name) for name in fields],
                records_analyzed=0,
                summary="No matched records to compare"
            )

        logger.info(f"Comparing {len(fields)} fields across {len(keys)} matched keys")

        results = fan_out(
            {name: (lambda name=name: self.diff_field(staging_id, target_id, key_field, name, keys)) for name in fields},
            self.max_parallel_queries
        )
        differences = [results[name] for name in fields]

        analysis = FieldDiffAnalysis(fields=differences, records_analyzed=len(keys), summary="")
        analysis.summary = (
            f"{analysis.perfect_fields} of {analysis.fields_analyzed} fields match perfectly; "
            f"{analysis.total_field_issues} differences found across {len(keys)} matched records"
        )
        return analysis

    def diff_field(
        self,
        staging_id: str,
        target_id: str,
        key_field: str,
        field_name: str,
        keys: Sequence[str]
    ) -> FieldDifference:
        """Compare one field; failures are recorded on the result."""
        try:
            rows = self._fetch_pairs(staging_id, target_id, key_field, field_name, keys)
        except (StoreError, ReconError) as e:
            logger.warning(f"Field comparison failed for '{field_name}': {e}")
            return FieldDifference(field=field_name, error=str(e))

        difference = FieldDifference(field=field_name, total=len(rows))
        for row in rows:
            if values_differ(row["source_value"], row["target_value"]):
                difference.diff_count += 1
                if len(difference.sample_diffs) < self.sample_diff_limit:
                    difference.sample_diffs.append({
                        "key": row["key_value"],
                        "source_value": row["source_value"],
                        "target_value": row["target_value"],
                    })
            else:
                difference.match_count += 1

        logger.debug(f"Field '{field_name}': {difference.diff_count}/{difference.total} differ")
        return difference

    def _fetch_pairs(
        self,
        staging_id: str,
        target_id: str,
        key_field: str,
        field_name: str,
        keys: Sequence[str]
    ) -> List[Dict[str, Any]]:
        qb = QueryBuilder(self.store.placeholder)
        source_key = qb.text_cast(qb.column("s", key_field))
        target_key = qb.text_cast(qb.column("t", key_field))
        sql = (
            f"SELECT {source_key} AS key_value, "
            f"{qb.text_cast(qb.column('s', field_name))} AS source_value, "
            f"{qb.text_cast(qb.column('t', field_name))} AS target_value "
            f"FROM {qb.relation(staging_id)} s JOIN {qb.relation(target_id)} t ON {source_key} = {target_key} "
            f"WHERE {source_key} IN ({qb.param_list(keys)}) "
            f"ORDER BY key_value LIMIT {qb.param(self.row_limit)}"
        )
        return self.store.execute_query(sql, qb.params).rows
