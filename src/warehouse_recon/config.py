"""
Configuration for Warehouse Reconciliation

All tunable constants of the engine live in ReconConfig. Values are
layered: built-in defaults, then an optional YAML file, then environment
variables prefixed with ``RECON_`` (e.g. ``RECON_BATCH_SIZE=500``).
"""

import logging
import os
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, List, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

DEFAULT_FREE_TEXT_MARKERS: Tuple[str, ...] = (
    "comment",
    "description",
    "notes",
    "header",
    "sys_tags",
    "sys_domain_path",
)


@dataclass
class DuplicateThresholds:
    """
    Group-count thresholds driving duplicate recommendations.

    Attributes:
        acceptable: Duplicate key groups at or below this are reported as
            acceptable
        critical: Duplicate key groups at or above this are reported as
            critical
    """

    acceptable: int = 0
    critical: int = 100

    def __post_init__(self):
        if self.acceptable < 0 or self.critical < 0:
            raise ValueError("Duplicate thresholds must be non-negative")
        if self.critical <= self.acceptable:
            raise ValueError("Critical duplicate threshold must exceed the acceptable threshold")


@dataclass
class ReconConfig:
    """Tunable settings for one reconciliation engine."""

    # Warehouse
    warehouse_dsn: Optional[str] = None
    staging_schema: Optional[str] = None
    staging_prefix: str = "recon_stg_"
    staging_ttl_seconds: int = 24 * 3600

    # Normalizer
    max_depth: int = 4
    max_field_name_length: int = 128

    # Staging loader
    batch_size: int = 1000
    retry_chunk_size: int = 100
    min_chunk_size: int = 1
    inter_batch_delay: float = 0.1
    settle_delay: float = 2.0
    verify_attempts: int = 5
    cleanup_on_failure: bool = True
    drop_staging_after_run: bool = False

    # Match analyzer
    target_only_sample_size: int = 10
    sample_match_limit: int = 5
    sample_display_fields: int = 3

    # Field differ
    diff_field_limit: int = 8
    diff_key_sample: int = 50
    diff_row_limit: int = 100
    sample_diff_limit: int = 3
    max_diff_field_name_length: int = 50
    free_text_markers: List[str] = field(default_factory=lambda: list(DEFAULT_FREE_TEXT_MARKERS))

    # Duplicate analyzer
    duplicate_key_limit: int = 100
    duplicate_row_limit: int = 100
    duplicate_thresholds: DuplicateThresholds = field(default_factory=DuplicateThresholds)

    # Concurrency
    max_parallel_queries: int = 4

    def __post_init__(self):
        if isinstance(self.duplicate_thresholds, dict):
            self.duplicate_thresholds = DuplicateThresholds(**self.duplicate_thresholds)

        positive = (
            "batch_size", "retry_chunk_size", "min_chunk_size", "max_depth",
            "max_field_name_length", "verify_attempts", "target_only_sample_size",
            "diff_field_limit", "diff_key_sample", "diff_row_limit",
            "duplicate_key_limit", "max_parallel_queries", "staging_ttl_seconds",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        if self.min_chunk_size > self.retry_chunk_size:
            raise ValueError("min_chunk_size cannot exceed retry_chunk_size")

        for name in ("inter_batch_delay", "settle_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReconConfig":
        """
        Build a config from a mapping.

        Args:
            data: Mapping of field name to value

        Returns:
            ReconConfig instance

        Raises:
            ValueError: If the mapping contains unknown keys
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str) -> "ReconConfig":
        """Load configuration from a YAML file."""
        return cls.from_dict(_read_yaml(path))

    @classmethod
    def from_env(cls, prefix: str = "RECON_", base: Optional["ReconConfig"] = None) -> "ReconConfig":
        """
        Overlay environment variables on a base config.

        Args:
            prefix: Environment variable prefix
            base: Config to overlay (defaults when omitted)

        Returns:
            New ReconConfig instance
        """
        data = asdict(base) if base else {}
        defaults = cls()

        for f in fields(cls):
            raw = os.getenv(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            data[f.name] = _coerce(f.name, raw, getattr(defaults, f.name))
            logger.debug(f"Config {f.name} set from environment")

        return cls.from_dict(data)

    @classmethod
    def load(cls, path: Optional[str] = None, prefix: str = "RECON_") -> "ReconConfig":
        """Defaults, then the YAML file (if any), then the environment."""
        base = cls.from_yaml(path) if path else cls()
        return cls.from_env(prefix=prefix, base=base)


def _read_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")

    logger.info(f"Loaded configuration from {path}")
    return data


def _coerce(name: str, raw: str, default: Any) -> Any:
    """Convert an environment string to the type of the default value."""
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"{name} expects a boolean, got '{raw}'")

    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            raise ValueError(f"{name} expects an integer, got '{raw}'")

    if isinstance(default, float):
        try:
            return float(raw)
        except ValueError:
            raise ValueError(f"{name} expects a number, got '{raw}'")

    if isinstance(default, list):
        return [item.strip() for item in raw.split(",") if item.strip()]

    if isinstance(default, DuplicateThresholds):
        acceptable, _, critical = raw.partition(",")
        try:
            return {"acceptable": int(acceptable), "critical": int(critical)}
        except ValueError:
            raise ValueError(f"{name} expects 'acceptable,critical', got '{raw}'")

    return raw
