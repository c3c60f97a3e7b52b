"""
Monitoring Module for Warehouse Reconciliation

Prometheus metrics for reconciliation runs and staging loads.

Usage:
    from warehouse_recon.monitoring import ReconciliationMetrics, start_metrics_server

    metrics = ReconciliationMetrics()
    start_metrics_server(9090)
    engine = ReconciliationEngine(store, config, metrics=metrics)
"""

from warehouse_recon.monitoring.metrics import ReconciliationMetrics, start_metrics_server

__all__ = [
    "ReconciliationMetrics",
    "start_metrics_server",
]
