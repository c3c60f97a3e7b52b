"""
Data Model for Warehouse Reconciliation

Result types exchanged between the reconciliation stages, plus the two
primitives every stage relies on: identifier validation and the single
point where ingested values become nullable text.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from warehouse_recon.errors import InputValidationError

FlatRecord = Dict[str, Optional[str]]

SAFE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_identifier(name: Any, what: str = "identifier") -> str:
    """
    Validate a field or relation-part name against the safe charset.

    Args:
        name: Candidate name
        what: Label used in the error message

    Returns:
        The name, unchanged

    Raises:
        InputValidationError: If the name is empty or contains characters
            outside [A-Za-z0-9_] or starts with a digit
    """
    if not isinstance(name, str) or not name:
        raise InputValidationError(f"{what} is required")

    if not SAFE_IDENTIFIER.match(name):
        raise InputValidationError(
            f"Invalid {what}: '{name}'",
            details={"value": name, "allowed": SAFE_IDENTIFIER.pattern}
        )

    return name


def validate_relation_id(relation_id: Any) -> str:
    """Validate a ``table`` or ``schema.table`` relation id."""
    if not isinstance(relation_id, str) or not relation_id.strip():
        raise InputValidationError("Relation name is required")

    parts = relation_id.split(".")
    if len(parts) > 3:
        raise InputValidationError(
            f"Invalid relation name format: '{relation_id}'",
            details={"value": relation_id}
        )

    for part in parts:
        validate_identifier(part, what="relation name part")

    return relation_id


def to_field_value(value: Any) -> Optional[str]:
    """
    Convert an ingested value to nullable text.

    Args:
        value: Scalar, list or dict from a raw record

    Returns:
        None for null, otherwise the canonical text form
    """
    if value is None:
        return None

    if isinstance(value, bool):
        return "true" if value else "false"

    if isinstance(value, float) and value.is_integer():
        return str(int(value))

    if isinstance(value, (list, dict)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)

    return str(value)


def format_rate(numerator: int, denominator: int) -> str:
    """Percentage with one decimal; "0.0" when the denominator is zero."""
    if not denominator:
        return "0.0"
    return f"{numerator / denominator * 100:.1f}"


@dataclass
class StagingHandle:
    """Handle to a loaded and verified staging relation."""

    relation_id: str
    record_count: int
    batches_used: int
    fields: List[str]
    created_at: datetime
    expires_at: datetime
    key_field: Optional[str] = None
    distinct_keys: Optional[int] = None
    non_null_keys: Optional[int] = None
    field_name_collisions: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relation_id": self.relation_id,
            "record_count": self.record_count,
            "batches_used": self.batches_used,
            "fields": self.fields,
            "key_field": self.key_field,
            "distinct_keys": self.distinct_keys,
            "non_null_keys": self.non_null_keys,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "field_name_collisions": self.field_name_collisions,
        }


@dataclass
class SchemaDescriptor:
    """Field-name partitions between staging (source) and target."""

    common: List[str]
    source_only: List[str]
    target_only: List[str]
    compatibility: float
    key_candidates: List[str] = field(default_factory=list)
    case_insensitive_matches: List[Dict[str, str]] = field(default_factory=list)

    @property
    def total_source_fields(self) -> int:
        return len(self.common) + len(self.source_only)

    @property
    def total_target_fields(self) -> int:
        return len(self.common) + len(self.target_only)

    def suggested_key(self) -> Optional[str]:
        """First key candidate, else the first common field."""
        if self.key_candidates:
            return self.key_candidates[0]
        if self.common:
            return self.common[0]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "common_fields": self.common,
            "source_only_fields": self.source_only,
            "target_only_fields": self.target_only,
            "key_candidates": self.key_candidates,
            "total_source_fields": self.total_source_fields,
            "total_target_fields": self.total_target_fields,
            "schema_compatibility": round(self.compatibility, 4),
            "case_insensitive_matches": self.case_insensitive_matches,
        }


@dataclass
class RelationKeyStats:
    """Key statistics for one relation."""

    total: int
    non_null: int
    distinct: int

    @property
    def null_keys(self) -> int:
        return self.total - self.non_null

    @property
    def duplicate_records(self) -> int:
        return self.total - self.distinct

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_records": self.total,
            "non_null_keys": self.non_null,
            "unique_keys": self.distinct,
            "null_keys": self.null_keys,
            "duplicate_records": self.duplicate_records,
        }


@dataclass
class KeyStats:
    """Validated key field with statistics for both relations."""

    key_field: str
    source: RelationKeyStats
    target: RelationKeyStats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key_field": self.key_field,
            "source": self.source.to_dict(),
            "target": self.target.to_dict(),
        }


@dataclass
class MatchPartition:
    """Matched, source-only (exhaustive) and target-only (sampled) keys."""

    key_field: str
    matched: List[str]
    source_only: List[str]
    target_only: List[str]
    sample_matches: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key_field": self.key_field,
            "match_count": len(self.matched),
            "matched_keys": self.matched,
            "source_only_count": len(self.source_only),
            "source_only_keys": self.source_only,
            "target_only_sample_count": len(self.target_only),
            "target_only_sample": self.target_only,
            "sample_matches": self.sample_matches,
        }


@dataclass
class FieldDifference:
    """Comparison outcome for one field across a sample of matched keys."""

    field: str
    total: int = 0
    match_count: int = 0
    diff_count: int = 0
    sample_diffs: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def match_rate(self) -> str:
        return format_rate(self.match_count, self.total)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "field": self.field,
            "total_records": self.total,
            "match_count": self.match_count,
            "diff_count": self.diff_count,
            "match_rate": self.match_rate,
            "sample_diffs": self.sample_diffs,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class FieldDiffAnalysis:
    """All per-field differences for one reconciliation run."""

    fields: List[FieldDifference]
    records_analyzed: int
    summary: str

    @property
    def fields_analyzed(self) -> int:
        return len(self.fields)

    @property
    def total_field_issues(self) -> int:
        return sum(f.diff_count for f in self.fields)

    @property
    def perfect_fields(self) -> int:
        return len([f for f in self.fields if f.diff_count == 0 and not f.error])

    @property
    def problematic_fields(self) -> int:
        return len([f for f in self.fields if f.diff_count > 0 or f.error])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields_analyzed": self.fields_analyzed,
            "records_analyzed": self.records_analyzed,
            "total_field_issues": self.total_field_issues,
            "perfect_fields": self.perfect_fields,
            "problematic_fields": self.problematic_fields,
            "field_comparison": [f.to_dict() for f in self.fields],
            "summary": self.summary,
        }


@dataclass
class DuplicateReport:
    """Repeated keys within one relation."""

    relation_id: str
    key_field: str
    duplicate_keys: List[Dict[str, Any]] = field(default_factory=list)
    duplicate_count: int = 0
    total_duplicate_records: int = 0
    duplicate_rows: List[Dict[str, Any]] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def has_duplicates(self) -> bool:
        return self.duplicate_count > 0

    def counts_by_key(self) -> Dict[str, int]:
        return {entry["key"]: entry["count"] for entry in self.duplicate_keys}

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "relation_id": self.relation_id,
            "key_field": self.key_field,
            "has_duplicates": self.has_duplicates,
            "duplicate_count": self.duplicate_count,
            "total_duplicate_records": self.total_duplicate_records,
            "duplicate_keys": self.duplicate_keys,
            "duplicate_rows": self.duplicate_rows,
            "recommendations": self.recommendations,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class DualDuplicateReport:
    """Duplicate analysis run independently against source and target."""

    source: DuplicateReport
    target: DuplicateReport
    common_duplicate_keys: List[str] = field(default_factory=list)
    source_only_duplicate_keys: List[str] = field(default_factory=list)
    target_only_duplicate_keys: List[str] = field(default_factory=list)
    common_duplicate_details: List[Dict[str, Any]] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, Any]:
        both_clean = not self.source.has_duplicates and not self.target.has_duplicates
        unknown = bool(self.source.error or self.target.error)
        if unknown:
            quality = "Unknown"
        elif self.common_duplicate_keys:
            quality = "Needs Attention"
        else:
            quality = "Good"

        return {
            "systems_with_duplicates": int(self.source.has_duplicates) + int(self.target.has_duplicates),
            "total_duplicate_keys": self.source.duplicate_count + self.target.duplicate_count,
            "total_duplicate_records": (
                self.source.total_duplicate_records + self.target.total_duplicate_records
            ),
            "both_clean": both_clean,
            "critical_issues": len(self.common_duplicate_keys),
            "data_quality": quality,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_duplicates": self.source.to_dict(),
            "target_duplicates": self.target.to_dict(),
            "cross_system_analysis": {
                "common_duplicate_keys": self.common_duplicate_keys,
                "source_only_duplicate_keys": self.source_only_duplicate_keys,
                "target_only_duplicate_keys": self.target_only_duplicate_keys,
                "common_duplicate_details": self.common_duplicate_details,
            },
            "summary": self.summary,
            "recommendations": self.recommendations,
        }


@dataclass
class ReconciliationReport:
    """Final report composed by the result aggregator."""

    run_id: str
    request: Dict[str, Any]
    staging: StagingHandle
    schema: SchemaDescriptor
    key_stats: KeyStats
    matches: MatchPartition
    field_differences: FieldDiffAnalysis
    duplicates: DualDuplicateReport
    summary: Dict[str, Any]
    started_at: datetime
    finished_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "request": self.request,
            "summary": self.summary,
            "staging": self.staging.to_dict(),
            "schema_analysis": self.schema.to_dict(),
            "record_counts": self.key_stats.to_dict(),
            "matches": self.matches.to_dict(),
            "field_differences": self.field_differences.to_dict(),
            "duplicates_analysis": self.duplicates.to_dict(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": self.duration_seconds,
        }
