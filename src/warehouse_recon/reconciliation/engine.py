"""
Reconciliation Engine

Facade wiring the stages of one reconciliation run:

    normalize -> stage -> schema -> key -> match -> field diff -> duplicates -> report

Stages run strictly in that order. Staging, key validation and matching
raise typed errors that abort the run; field diffs and duplicate analysis
degrade to partial results instead.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from warehouse_recon.config import ReconConfig
from warehouse_recon.errors import ReconError, SchemaAccessError, classify_store_error
from warehouse_recon.models import (
    DualDuplicateReport,
    DuplicateReport,
    FlatRecord,
    ReconciliationReport,
    SchemaDescriptor,
    StagingHandle,
    validate_identifier,
    validate_relation_id,
)
from warehouse_recon.reconciliation.differ import FieldDiffer
from warehouse_recon.reconciliation.duplicates import DuplicateAnalyzer
from warehouse_recon.reconciliation.keys import KeyValidator
from warehouse_recon.reconciliation.matcher import MatchAnalyzer
from warehouse_recon.reconciliation.normalizer import RecordNormalizer
from warehouse_recon.reconciliation.report import ResultAggregator
from warehouse_recon.reconciliation.schema import SchemaReconciler
from warehouse_recon.staging.loader import StagingLoader, generate_run_id
from warehouse_recon.store.base import StoreError, TabularStore
from warehouse_recon.utils.correlation import CorrelationContext

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """
    Reconciles ingested records against a warehouse relation.

    Usage:
        engine = ReconciliationEngine(PostgresStore(dsn), ReconConfig.load())
        report = engine.reconcile(records, "analytics.customers", "customer_id")
        print(report.summary["match_rate"])
    """

    def __init__(self, store: TabularStore, config: Optional[ReconConfig] = None, metrics=None):
        """
        Initialize the engine.

        Args:
            store: Warehouse store shared by all stages
            config: Engine configuration (defaults when omitted)
            metrics: Optional ReconciliationMetrics
        """
        self.store = store
        self.config = config or ReconConfig()
        self.metrics = metrics

        cfg = self.config
        workers = cfg.max_parallel_queries

        self.loader = StagingLoader(store, cfg, metrics)
        self.schema_reconciler = SchemaReconciler(store, workers)
        self.key_validator = KeyValidator(store, workers)
        self.match_analyzer = MatchAnalyzer(
            store,
            target_only_sample_size=cfg.target_only_sample_size,
            sample_match_limit=cfg.sample_match_limit,
            sample_display_fields=cfg.sample_display_fields,
            max_parallel_queries=workers,
        )
        self.field_differ = FieldDiffer(
            store,
            field_limit=cfg.diff_field_limit,
            key_sample=cfg.diff_key_sample,
            row_limit=cfg.diff_row_limit,
            sample_diff_limit=cfg.sample_diff_limit,
            max_field_name_length=cfg.max_diff_field_name_length,
            free_text_markers=cfg.free_text_markers,
            max_parallel_queries=workers,
        )
        self.duplicate_analyzer = DuplicateAnalyzer(
            store,
            thresholds=cfg.duplicate_thresholds,
            key_limit=cfg.duplicate_key_limit,
            row_limit=cfg.duplicate_row_limit,
            max_parallel_queries=workers,
        )
        self.aggregator = ResultAggregator()

        logger.info("ReconciliationEngine initialized")

    def normalize(self, records: Iterable[Any]) -> Tuple[List[FlatRecord], Dict[str, List[str]]]:
        """
        Flatten raw records; returns (flat records, field name collisions).

        Field names are truncated to the shorter of ``max_field_name_length``
        and the store's identifier limit, so names the store would truncate
        itself show up as collisions here.
        """
        max_length = min(self.config.max_field_name_length, self.store.max_identifier_length)
        normalizer = RecordNormalizer(self.config.max_depth, max_length)
        flat = normalizer.flatten_batch(records)
        return flat, normalizer.collision_report()

    def load_staging(
        self,
        records: Iterable[Any],
        run_id: Optional[str] = None,
        key_field: Optional[str] = None
    ) -> StagingHandle:
        """
        Normalize raw records and load them into a new staging relation.

        Usable on its own, e.g. for schema-only analysis.
        """
        flat, collisions = self.normalize(records)
        handle = self.loader.load(flat, run_id=run_id, key_field=key_field)
        handle.field_name_collisions = collisions
        return handle

    def common_fields(self, staging_id: str, target_id: str) -> SchemaDescriptor:
        return self.schema_reconciler.common_fields(staging_id, target_id)

    def duplicates(self, relation_id: str, key_field: str, include_rows: bool = False) -> DuplicateReport:
        report = self.duplicate_analyzer.duplicates(relation_id, key_field, include_rows=include_rows)
        if self.metrics:
            self.metrics.record_duplicates(relation_id, report.duplicate_count)
        return report

    def duplicates_both(self, staging_id: str, target_id: str, key_field: str) -> DualDuplicateReport:
        dual = self.duplicate_analyzer.duplicates_both(staging_id, target_id, key_field)
        if self.metrics:
            self.metrics.record_duplicates(target_id, dual.source.duplicate_count, side="source")
            self.metrics.record_duplicates(target_id, dual.target.duplicate_count, side="target")
        return dual

    def cleanup(self, relation_id: str) -> None:
        """Drop a staging relation."""
        self.loader.delete(relation_id)

    def expire_stale(self) -> List[str]:
        """Drop staging relations past their TTL."""
        return self.loader.expire_stale()

    def reconcile(
        self,
        records: Iterable[Any],
        target_relation: str,
        key_field: str,
        field_subset: Optional[List[str]] = None,
        run_id: Optional[str] = None,
        cleanup: Optional[bool] = None
    ) -> ReconciliationReport:
        """
        Run a full reconciliation.

        Args:
            records: Raw (possibly nested) records
            target_relation: Target relation id (``table`` or ``schema.table``)
            key_field: Join key
            field_subset: Fields to compare (all common fields when None)
            run_id: Run identifier (generated when omitted)
            cleanup: Drop the staging relation afterwards (defaults to
                ``drop_staging_after_run``)

        Returns:
            ReconciliationReport

        Raises:
            InputValidationError: For missing or malformed inputs
            SchemaAccessError: If a relation cannot be read
            KeyNotCommonError: If the key is not a common field
            StagingVerificationError, PartialInsertError: If staging fails
            QueryExecutionError: If the store rejects a primary query
        """
        validate_relation_id(target_relation)
        validate_identifier(key_field, what="key field")
        if field_subset is not None:
            for name in field_subset:
                validate_identifier(name, what="field name")

        run_id = run_id or generate_run_id()
        if cleanup is None:
            cleanup = self.config.drop_staging_after_run

        with CorrelationContext(run_id):
            logger.info(f"Starting reconciliation {run_id} against {target_relation} on '{key_field}'")
            started_at = datetime.now(timezone.utc)
            start_time = time.time()
            staging = None

            try:
                self._require_target(target_relation)

                staging = self.load_staging(records, run_id=run_id, key_field=key_field)
                staging_id = staging.relation_id

                schema = self.common_fields(staging_id, target_relation)
                key_stats = self.key_validator.validate_against(staging_id, target_relation, key_field, schema)
                matches = self.match_analyzer.match(
                    staging_id, target_relation, key_field, display_fields=schema.common
                )
                field_differences = self.field_differ.diff_fields(
                    staging_id, target_relation, key_field, matches.matched, field_subset, schema.common
                )
                duplicates = self.duplicates_both(staging_id, target_relation, key_field)

                report = self.aggregator.aggregate(
                    run_id=run_id,
                    target_relation=target_relation,
                    field_subset=field_subset,
                    staging=staging,
                    schema=schema,
                    key_stats=key_stats,
                    matches=matches,
                    field_differences=field_differences,
                    duplicates=duplicates,
                    started_at=started_at,
                    finished_at=datetime.now(timezone.utc),
                )

            except ReconError as e:
                self._record_failure(target_relation, start_time, e)
                raise
            except StoreError as e:
                error = classify_store_error(e, "Reconciliation")
                self._record_failure(target_relation, start_time, error)
                raise error
            finally:
                if cleanup and staging is not None:
                    self._drop_staging(staging.relation_id)

            duration = time.time() - start_time
            if self.metrics:
                self.metrics.record_run(target_relation, "success", duration)
                self.metrics.record_match(target_relation, len(matches.matched), len(matches.source_only))

            logger.info(
                f"Reconciliation {run_id} finished in {duration:.2f}s: "
                f"match_rate={report.summary['match_rate']}%, "
                f"source_only={report.summary['records_failed_to_reach_target']}",
                extra={"run_id": run_id, "relation": target_relation, "duration_seconds": duration}
            )
            return report

    def _require_target(self, target_relation: str) -> None:
        try:
            exists = self.store.table_exists(target_relation)
        except StoreError as e:
            raise SchemaAccessError(
                f"Could not check target relation '{target_relation}': {e}",
                details={"relation": target_relation, "reason": str(e)}
            )

        if not exists:
            raise SchemaAccessError(
                f"Target relation '{target_relation}' does not exist",
                details={"relation": target_relation}
            )

    def _record_failure(self, target_relation: str, start_time: float, error: ReconError) -> None:
        duration = time.time() - start_time
        logger.error(
            f"Reconciliation against {target_relation} failed ({error.kind}): {error.message}",
            extra={"relation": target_relation, "duration_seconds": duration}
        )
        if self.metrics:
            self.metrics.record_run(target_relation, "failure", duration, error_kind=error.kind)

    def _drop_staging(self, relation_id: str) -> None:
        try:
            self.loader.delete(relation_id)
        except ReconError as e:
            logger.warning(f"Could not drop staging relation {relation_id}: {e}")
