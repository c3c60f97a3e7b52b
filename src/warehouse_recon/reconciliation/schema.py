"""
Schema Reconciler for Warehouse Reconciliation

Discovers the field names shared by the staging relation and the target
relation. Each relation is probed with a single ``LIMIT 1`` query; field
names are taken from the result columns, so no catalog access is needed
and no relation is scanned.
"""

import logging
from typing import Dict, List, Sequence

from warehouse_recon.errors import SchemaAccessError
from warehouse_recon.models import SchemaDescriptor, validate_relation_id
from warehouse_recon.store.base import StoreError, TabularStore
from warehouse_recon.store.query import QueryBuilder
from warehouse_recon.utils.concurrency import fan_out

logger = logging.getLogger(__name__)

KEY_MARKERS = ("id", "key", "number")


def is_key_candidate(field_name: str, markers: Sequence[str] = KEY_MARKERS) -> bool:
    """True if the lowercase name contains (or equals) one of the markers."""
    lowered = field_name.lower()
    return any(marker in lowered for marker in markers)


class SchemaReconciler:
    """Computes common/source-only/target-only field partitions."""

    def __init__(self, store: TabularStore, max_parallel_queries: int = 4):
        self.store = store
        self.max_parallel_queries = max_parallel_queries

    def fields_of(self, relation_id: str) -> List[str]:
        """
        Field names of a relation, in declaration order.

        Raises:
            SchemaAccessError: If the probe query fails
        """
        validate_relation_id(relation_id)
        qb = QueryBuilder(self.store.placeholder)
        sql = f"SELECT * FROM {qb.relation(relation_id)} LIMIT 1"

        try:
            result = self.store.execute_query(sql)
        except StoreError as e:
            raise SchemaAccessError(
                f"Could not read the fields of '{relation_id}': {e}",
                details={"relation": relation_id, "reason": str(e)}
            )

        return list(result.columns)

    def common_fields(self, staging_id: str, target_id: str) -> SchemaDescriptor:
        """
        Compare the fields of the staging and target relations.

        Args:
            staging_id: Staging (source) relation id
            target_id: Target relation id

        Returns:
            SchemaDescriptor; field lists keep source order for ``common``
            and ``source_only`` and target order for ``target_only``
        """
        probes = fan_out(
            {
                "source": lambda: self.fields_of(staging_id),
                "target": lambda: self.fields_of(target_id),
            },
            self.max_parallel_queries
        )
        source_fields, target_fields = probes["source"], probes["target"]
        source_set, target_set = set(source_fields), set(target_fields)

        common = [f for f in source_fields if f in target_set]
        source_only = [f for f in source_fields if f not in target_set]
        target_only = [f for f in target_fields if f not in source_set]

        largest = max(len(source_fields), len(target_fields))
        compatibility = len(common) / largest if largest else 0.0

        descriptor = SchemaDescriptor(
            common=common,
            source_only=source_only,
            target_only=target_only,
            compatibility=compatibility,
            key_candidates=[f for f in common if is_key_candidate(f)],
        )

        if not common:
            descriptor.case_insensitive_matches = self._case_insensitive_pairs(source_fields, target_fields)
            logger.warning(
                f"No common fields between {staging_id} and {target_id}"
                + (
                    f"; {len(descriptor.case_insensitive_matches)} differ only by case"
                    if descriptor.case_insensitive_matches else ""
                )
            )

        logger.info(
            f"Schema analysis: {len(common)} common, {len(source_only)} source-only, "
            f"{len(target_only)} target-only ({compatibility:.1%} compatible)"
        )
        return descriptor

    @staticmethod
    def _case_insensitive_pairs(source_fields: List[str], target_fields: List[str]) -> List[Dict[str, str]]:
        by_lower = {}
        for name in target_fields:
            by_lower.setdefault(name.lower(), name)

        return [
            {"source": name, "target": by_lower[name.lower()]}
            for name in source_fields
            if name.lower() in by_lower
        ]
