"""
Reconciliation stages.

Main components:
- normalizer: nested record flattening
- schema: common-field discovery
- keys: key validation and statistics
- matcher: matched / source-only / target-only partition
- differ: per-field value comparison
- duplicates: duplicate-key analysis
- report: result aggregation
- engine: facade running all stages
"""

from warehouse_recon.reconciliation.differ import FieldDiffer
from warehouse_recon.reconciliation.duplicates import DuplicateAnalyzer
from warehouse_recon.reconciliation.engine import ReconciliationEngine
from warehouse_recon.reconciliation.keys import KeyValidator
from warehouse_recon.reconciliation.matcher import MatchAnalyzer
from warehouse_recon.reconciliation.normalizer import RecordNormalizer
from warehouse_recon.reconciliation.report import ResultAggregator
from warehouse_recon.reconciliation.schema import SchemaReconciler

__all__ = [
    "DuplicateAnalyzer",
    "FieldDiffer",
    "KeyValidator",
    "MatchAnalyzer",
    "ReconciliationEngine",
    "RecordNormalizer",
    "ResultAggregator",
    "SchemaReconciler",
]
