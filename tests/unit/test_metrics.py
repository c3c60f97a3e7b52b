"""
Unit tests for reconciliation metrics.
"""

from unittest.mock import patch

import pytest
from prometheus_client import CollectorRegistry

from warehouse_recon.monitoring.metrics import ReconciliationMetrics, start_metrics_server


class TestReconciliationMetrics:
    """Test suite for ReconciliationMetrics."""

    @pytest.fixture
    def registry(self):
        return CollectorRegistry()

    @pytest.fixture
    def metrics(self, registry):
        """Metrics on a fresh registry."""
        return ReconciliationMetrics(registry=registry)

    def test_init_with_custom_registry(self, registry, metrics):
        assert metrics.registry is registry

    def test_separate_registries_do_not_conflict(self):
        ReconciliationMetrics(registry=CollectorRegistry())
        ReconciliationMetrics(registry=CollectorRegistry())

    def test_record_successful_run(self, registry, metrics):
        metrics.record_run("analytics.customers", "success", 4.2)

        assert registry.get_sample_value(
            "recon_runs_total",
            {"target": "analytics.customers", "status": "success", "error_kind": ""}
        ) == 1.0
        assert registry.get_sample_value(
            "recon_run_duration_seconds_count", {"target": "analytics.customers"}
        ) == 1.0
        assert registry.get_sample_value(
            "recon_run_duration_seconds_sum", {"target": "analytics.customers"}
        ) == pytest.approx(4.2)

    def test_record_failed_run(self, registry, metrics):
        metrics.record_run("customers", "failure", 0.5, error_kind="KEY_NOT_COMMON")
        metrics.record_run("customers", "failure", 0.5, error_kind="KEY_NOT_COMMON")

        assert registry.get_sample_value(
            "recon_runs_total",
            {"target": "customers", "status": "failure", "error_kind": "KEY_NOT_COMMON"}
        ) == 2.0

    def test_record_staging_load(self, registry, metrics):
        metrics.record_staging_load(1000, 1, 2)
        metrics.record_staging_load(10, 0, 1)

        assert registry.get_sample_value("recon_staging_rows_loaded_total") == 1010.0
        assert registry.get_sample_value("recon_staging_rows_skipped_total") == 1.0
        assert registry.get_sample_value("recon_staging_batches_total") == 3.0

    def test_record_match_sets_gauges(self, registry, metrics):
        metrics.record_match("customers", 90, 10)
        metrics.record_match("customers", 95, 5)

        assert registry.get_sample_value("recon_matched_keys", {"target": "customers"}) == 95.0
        assert registry.get_sample_value("recon_source_only_keys", {"target": "customers"}) == 5.0

    def test_record_duplicates(self, registry, metrics):
        metrics.record_duplicates("customers", 3, side="target")
        metrics.record_duplicates("customers", 0)

        assert registry.get_sample_value(
            "recon_duplicate_key_groups", {"relation": "customers", "side": "target"}
        ) == 3.0
        assert registry.get_sample_value(
            "recon_duplicate_key_groups", {"relation": "customers", "side": "single"}
        ) == 0.0


class TestMetricsServer:

    @patch("warehouse_recon.monitoring.metrics.start_http_server")
    def test_start_metrics_server(self, mock_start):
        registry = CollectorRegistry()

        start_metrics_server(9100, registry=registry)

        mock_start.assert_called_once_with(9100, registry=registry)

    @patch("warehouse_recon.monitoring.metrics.start_http_server")
    def test_port_in_use_is_tolerated(self, mock_start):
        mock_start.side_effect = OSError("[Errno 98] Address already in use")

        start_metrics_server(9100)

    @patch("warehouse_recon.monitoring.metrics.start_http_server")
    def test_other_errors_propagate(self, mock_start):
        mock_start.side_effect = OSError("Permission denied")

        with pytest.raises(OSError):
            start_metrics_server(80)
