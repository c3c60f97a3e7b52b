"""Staging relation lifecycle."""

from warehouse_recon.staging.loader import StagingLoader, generate_run_id

__all__ = ["StagingLoader", "generate_run_id"]
