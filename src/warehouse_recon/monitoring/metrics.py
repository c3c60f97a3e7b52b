"""
Prometheus Metrics for Warehouse Reconciliation

Run outcomes, durations, staging load volumes and match/duplicate gauges.
Metrics register on an injectable CollectorRegistry so several engines
(and tests) can each own an isolated set.
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, REGISTRY, start_http_server

logger = logging.getLogger(__name__)


class ReconciliationMetrics:
    """Prometheus metrics for reconciliation operations."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize reconciliation metrics.

        Args:
            registry: Registry to register on (the global one when None)
        """
        self.registry = registry if registry is not None else REGISTRY

        # Reconciliation run counter
        self.reconciliation_runs_total = Counter(
            'recon_runs_total',
            'Total number of reconciliation runs',
            ['target', 'status', 'error_kind'],
            registry=self.registry
        )

        # Reconciliation duration
        self.reconciliation_duration_seconds = Histogram(
            'recon_run_duration_seconds',
            'Duration of reconciliation runs in seconds',
            ['target'],
            buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800],
            registry=self.registry
        )

        # Staging loads
        self.staging_rows_loaded_total = Counter(
            'recon_staging_rows_loaded_total',
            'Rows inserted into staging relations',
            registry=self.registry
        )

        self.staging_rows_skipped_total = Counter(
            'recon_staging_rows_skipped_total',
            'Rows skipped after all insert retries failed',
            registry=self.registry
        )

        self.staging_batches_total = Counter(
            'recon_staging_batches_total',
            'Top-level insert batches issued',
            registry=self.registry
        )

        # Current match gauges
        self.matched_keys = Gauge(
            'recon_matched_keys',
            'Keys present in both source and target in the last run',
            ['target'],
            registry=self.registry
        )

        self.source_only_keys = Gauge(
            'recon_source_only_keys',
            'Source keys missing from the target in the last run',
            ['target'],
            registry=self.registry
        )

        # Duplicate groups
        self.duplicate_key_groups = Gauge(
            'recon_duplicate_key_groups',
            'Duplicate key groups found in the last analysis',
            ['relation', 'side'],
            registry=self.registry
        )

        logger.info("ReconciliationMetrics initialized")

    def record_run(
        self,
        target: str,
        status: str,
        duration_seconds: float,
        error_kind: str = ""
    ) -> None:
        """
        Record a reconciliation run.

        Args:
            target: Target relation id
            status: success or failure
            duration_seconds: Duration in seconds
            error_kind: Error kind for failed runs
        """
        self.reconciliation_runs_total.labels(
            target=target,
            status=status,
            error_kind=error_kind
        ).inc()

        self.reconciliation_duration_seconds.labels(target=target).observe(duration_seconds)

        logger.debug(f"Recorded reconciliation run for {target}: status={status}, duration={duration_seconds:.2f}s")

    def record_staging_load(self, inserted: int, skipped: int, batches: int) -> None:
        self.staging_rows_loaded_total.inc(inserted)
        self.staging_rows_skipped_total.inc(skipped)
        self.staging_batches_total.inc(batches)

    def record_match(self, target: str, matched: int, source_only: int) -> None:
        self.matched_keys.labels(target=target).set(matched)
        self.source_only_keys.labels(target=target).set(source_only)

    def record_duplicates(self, relation: str, groups: int, side: str = "single") -> None:
        self.duplicate_key_groups.labels(relation=relation, side=side).set(groups)


def start_metrics_server(port: int = 9090, registry: Optional[CollectorRegistry] = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    try:
        start_http_server(port, registry=registry if registry is not None else REGISTRY)
        logger.info(f"Metrics server started on port {port}")
    except OSError as e:
        if "Address already in use" in str(e):
            logger.warning(f"Metrics server already running on port {port}")
        else:
            raise
