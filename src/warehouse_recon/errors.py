"""
Error Taxonomy for Warehouse Reconciliation

Every error surfaced to a caller carries a machine-checkable ``kind``,
a human-readable message and remediation suggestions. Store drivers raise
their own exception types; those are wrapped in ``StoreError`` by the
store layer and converted to one of the typed errors below before they
leave the engine.
"""

import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ReconError(Exception):
    """Base exception for all reconciliation errors."""

    kind = "RECONCILIATION_ERROR"
    default_suggestions: List[str] = []

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None
    ):
        self.message = message
        self.details = details or {}
        self.suggestions = list(suggestions) if suggestions else list(self.default_suggestions)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for callers (CLI output, HTTP layers)."""
        return {
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
            "suggestions": self.suggestions,
        }


class InputValidationError(ReconError):
    """Missing table or key, or a malformed identifier."""

    kind = "INPUT_VALIDATION_ERROR"
    default_suggestions = [
        "Provide the target relation as table or schema.table",
        "Use only letters, digits and underscores in field and table names",
    ]


class SchemaAccessError(ReconError):
    """The field list of the staging or target relation could not be read."""

    kind = "SCHEMA_ACCESS_ERROR"
    default_suggestions = [
        "Verify the relation exists and is readable by the configured user",
        "Check the schema and table spelling (names are case-sensitive)",
    ]


class KeyNotCommonError(ReconError):
    """The requested key field is not present in both relations."""

    kind = "KEY_NOT_COMMON"

    def __init__(
        self,
        key_field: str,
        suggested: Optional[str],
        common_fields: List[str]
    ):
        self.key_field = key_field
        self.suggested = suggested
        message = f"Key field '{key_field}' is not available in both relations"
        if suggested:
            message += f". Suggested alternative: '{suggested}'"

        suggestions = ["Try a different common field as the key"]
        if suggested:
            suggestions.insert(0, f"Use '{suggested}' as the key field")

        super().__init__(
            message,
            details={
                "key_field": key_field,
                "suggested": suggested,
                "available_common_fields": common_fields[:10],
            },
            suggestions=suggestions
        )


class StagingVerificationError(ReconError):
    """Row count in the staging relation does not match the input."""

    kind = "STAGING_VERIFICATION_ERROR"
    default_suggestions = [
        "Retry the load; the warehouse may still be settling",
        "Check the input for records that the warehouse rejects",
    ]


class PartialInsertError(ReconError):
    """A batch and all of its sub-batch retries failed."""

    kind = "PARTIAL_INSERT_ERROR"
    default_suggestions = [
        "Inspect the skipped rows for values the warehouse rejects",
        "Reduce the batch size and retry",
    ]


class QueryExecutionError(ReconError):
    """The store rejected generated SQL."""

    kind = "QUERY_EXECUTION_ERROR"
    default_suggestions = [
        "Check your table and field names",
        "Verify you have proper permissions",
    ]


# Store error text patterns -> (reason, suggestions). Order matters: the
# first matching pattern wins.
_STORE_ERROR_PATTERNS = [
    (
        ("column", "does not exist"),
        "COLUMN_NOT_FOUND",
        [
            "Check field names for typos",
            "Field names are case-sensitive; match the target schema exactly",
            "Try a different common field",
        ],
    ),
    (
        ("no such column",),
        "COLUMN_NOT_FOUND",
        [
            "Check field names for typos",
            "Try a different common field",
        ],
    ),
    (
        ("relation", "does not exist"),
        "RELATION_NOT_FOUND",
        [
            "Check the relation name format: schema.table",
            "Verify the table exists and has not expired",
        ],
    ),
    (
        ("no such table",),
        "RELATION_NOT_FOUND",
        [
            "Check the relation name",
            "Verify the table exists and has not expired",
        ],
    ),
    (
        ("permission denied",),
        "PERMISSION_DENIED",
        [
            "Ask your administrator for read access to the relation",
            "Verify the configured warehouse user",
        ],
    ),
    (
        ("syntax error",),
        "SYNTAX_ERROR",
        [
            "Remove special characters from field names",
            "Check the relation name format",
        ],
    ),
    (
        ("timeout",),
        "QUERY_TIMEOUT",
        [
            "Try with a smaller field subset",
            "Try again later when system load is lower",
        ],
    ),
    (
        ("canceling statement",),
        "QUERY_TIMEOUT",
        [
            "Try with a smaller field subset",
            "Try again later when system load is lower",
        ],
    ),
]


def classify_store_error(exc: Exception, context: str) -> QueryExecutionError:
    """
    Convert a store failure into a typed QueryExecutionError.

    The store error text is the only signal available because field names
    are user-supplied and not validated against the target schema before
    query construction.

    Args:
        exc: Exception raised by the store
        context: What the engine was doing (e.g. "match analysis")

    Returns:
        QueryExecutionError with a ``reason`` detail and suggestions
    """
    text = str(exc)
    lowered = text.lower()

    for needles, reason, suggestions in _STORE_ERROR_PATTERNS:
        if all(needle in lowered for needle in needles):
            return QueryExecutionError(
                f"{context} failed: {text}",
                details={"reason": reason, "context": context},
                suggestions=suggestions
            )

    logger.debug(f"Unclassified store error during {context}: {text}")
    return QueryExecutionError(
        f"{context} failed: {text}",
        details={"reason": "UNKNOWN", "context": context}
    )
