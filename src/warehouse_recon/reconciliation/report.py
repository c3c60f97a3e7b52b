"""
Result Aggregator for Warehouse Reconciliation

Pure composition of the stage results into one ReconciliationReport.
No store access happens here.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from warehouse_recon.models import (
    DualDuplicateReport,
    FieldDiffAnalysis,
    KeyStats,
    MatchPartition,
    ReconciliationReport,
    SchemaDescriptor,
    StagingHandle,
    format_rate,
)


class ResultAggregator:
    """Builds the final report and its summary block."""

    def summarize(
        self,
        key_stats: KeyStats,
        schema: SchemaDescriptor,
        matches: MatchPartition,
        field_differences: FieldDiffAnalysis
    ) -> Dict[str, Any]:
        """
        Derive the summary metrics.

        ``match_rate`` is relative to all source records and
        ``pipeline_success_rate`` to the distinct source keys; both are
        one-decimal strings and "0.0" for a zero denominator.
        """
        matched = len(matches.matched)
        source = key_stats.source

        return {
            "key_field": key_stats.key_field,
            "total_source_records": source.total,
            "unique_source_keys": source.distinct,
            "duplicate_records_in_source": source.duplicate_records,
            "null_source_keys": source.null_keys,
            "target_records": key_stats.target.total,
            "records_reached_target": matched,
            "records_failed_to_reach_target": len(matches.source_only),
            "records_only_in_target_sample": len(matches.target_only),
            "match_rate": format_rate(matched, source.total),
            "pipeline_success_rate": format_rate(matched, source.distinct),
            "fields_analyzed": field_differences.fields_analyzed,
            "total_field_issues": field_differences.total_field_issues,
            "schema_compatibility": f"{schema.compatibility * 100:.1f}%",
            "common_fields_count": len(schema.common),
        }

    def aggregate(
        self,
        run_id: str,
        target_relation: str,
        field_subset: Optional[List[str]],
        staging: StagingHandle,
        schema: SchemaDescriptor,
        key_stats: KeyStats,
        matches: MatchPartition,
        field_differences: FieldDiffAnalysis,
        duplicates: DualDuplicateReport,
        started_at: datetime,
        finished_at: datetime
    ) -> ReconciliationReport:
        request = {
            "run_id": run_id,
            "target_relation": target_relation,
            "key_field": key_stats.key_field,
            "field_subset": list(field_subset) if field_subset is not None else None,
            "staging_relation": staging.relation_id,
        }

        return ReconciliationReport(
            run_id=run_id,
            request=request,
            staging=staging,
            schema=schema,
            key_stats=key_stats,
            matches=matches,
            field_differences=field_differences,
            duplicates=duplicates,
            summary=self.summarize(key_stats, schema, matches, field_differences),
            started_at=started_at,
            finished_at=finished_at,
        )
