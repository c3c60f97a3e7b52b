"""
Record Normalizer for Warehouse Reconciliation

Flattens raw nested records (API payloads, JSON/JSONL lines) into flat,
string-keyed records whose values are nullable text, ready for loading
into a staging relation.
"""

import logging
import re
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Set

from warehouse_recon.models import FlatRecord, to_field_value

logger = logging.getLogger(__name__)

REFERENCE_KEYS = ("display_value", "link", "value")

_DISALLOWED = re.compile(r"[^A-Za-z0-9_]")


def sanitize_field_name(name: str, max_length: int = 128) -> str:
    """
    Sanitize a raw field name for use as a column name.

    Case is preserved; joins against the target relation are case-sensitive.

    Args:
        name: Raw (possibly composite) field name
        max_length: Maximum length of the result

    Returns:
        Name containing only [A-Za-z0-9_] and not starting with a digit
    """
    cleaned = _DISALLOWED.sub("_", str(name))
    if not cleaned:
        cleaned = "_"
    if cleaned[0].isdigit():
        cleaned = "_" + cleaned
    return cleaned[:max_length]


def is_reference_shape(value: Dict[str, Any]) -> bool:
    """True for objects like {"value": ..., "link": ...}."""
    return any(key in value for key in REFERENCE_KEYS)


class RecordNormalizer:
    """
    Flattens nested records into FlatRecords.

    Sanitization can map two distinct raw names onto one output key; the
    last value written wins. Every such collision is logged and collected
    in ``collisions`` so callers can surface it.
    """

    def __init__(self, max_depth: int = 4, max_field_name_length: int = 128):
        """
        Initialize the normalizer.

        Args:
            max_depth: Nesting depth beyond which objects are serialized
                to JSON text instead of being recursed into
            max_field_name_length: Truncation length for field names
        """
        self.max_depth = max_depth
        self.max_field_name_length = max_field_name_length
        self.collisions: Dict[str, Set[str]] = defaultdict(set)
        logger.debug(f"Initialized RecordNormalizer (max_depth={max_depth})")

    def flatten(self, record: Any, prefix: str = "", depth: int = 0) -> FlatRecord:
        """
        Flatten one raw record.

        Args:
            record: Raw nested record
            prefix: Composite name prefix for nested calls
            depth: Current nesting depth

        Returns:
            Flat record of sanitized name -> nullable text
        """
        flattened: FlatRecord = {}
        origins: Dict[str, str] = {}

        if not isinstance(record, dict):
            name = self._sanitize(prefix or "data")
            flattened[name] = to_field_value(record)
            return flattened

        self._flatten_into(flattened, origins, record, prefix, depth)
        return flattened

    def flatten_batch(self, records: Iterable[Any]) -> List[FlatRecord]:
        """Flatten a sequence of raw records, preserving order."""
        return [self.flatten(record) for record in records]

    def collision_report(self) -> Dict[str, List[str]]:
        """Sanitized name -> sorted raw names that collided on it."""
        return {name: sorted(raws) for name, raws in sorted(self.collisions.items())}

    def _flatten_into(
        self,
        out: FlatRecord,
        origins: Dict[str, str],
        record: Dict[str, Any],
        prefix: str,
        depth: int
    ) -> None:
        for key, value in record.items():
            composite = f"{prefix}_{key}" if prefix else str(key)

            if isinstance(value, dict):
                if is_reference_shape(value):
                    for ref_key in REFERENCE_KEYS:
                        if ref_key in value:
                            self._emit(out, origins, f"{composite}_{ref_key}", value[ref_key])
                elif depth < self.max_depth:
                    self._flatten_into(out, origins, value, composite, depth + 1)
                else:
                    self._emit(out, origins, composite, value)
            else:
                # Scalars, nulls and arrays (arrays are never recursed)
                self._emit(out, origins, composite, value)

    def _emit(
        self,
        out: FlatRecord,
        origins: Dict[str, str],
        raw_name: str,
        value: Any
    ) -> None:
        name = self._sanitize(raw_name)

        previous = origins.get(name)
        if previous is not None and previous != raw_name:
            if raw_name not in self.collisions[name]:
                logger.warning(
                    f"Field name collision: '{previous}' and '{raw_name}' both sanitize to '{name}'; "
                    f"keeping the value of '{raw_name}'"
                )
            self.collisions[name].update((previous, raw_name))

        origins[name] = raw_name
        out[name] = to_field_value(value)

    def _sanitize(self, name: str) -> str:
        return sanitize_field_name(name, self.max_field_name_length)
