"""
Unit tests for correlation module.
"""

import logging
import uuid

import pytest

from warehouse_recon.utils.concurrency import fan_out
from warehouse_recon.utils.correlation import (
    CorrelationContext,
    correlation_id_filter,
    generate_correlation_id,
    get_correlation_id,
    setup_correlation_logging,
)


def make_record():
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg="Test message",
        args=(),
        exc_info=None
    )


class TestCorrelationIdGeneration:
    """Test correlation ID generation functions."""

    def test_generate_correlation_id_returns_valid_uuid(self):
        """Test that generated correlation ID is a valid UUID."""
        correlation_id = generate_correlation_id()

        assert isinstance(correlation_id, str)
        assert str(uuid.UUID(correlation_id)) == correlation_id

    def test_generate_correlation_id_returns_unique_values(self):
        assert generate_correlation_id() != generate_correlation_id()


class TestCorrelationContext:
    """Test CorrelationContext context manager."""

    def test_get_correlation_id_returns_none_outside_context(self):
        assert get_correlation_id() is None

    def test_context_creates_new_id(self):
        """Test that context manager creates new ID."""
        with CorrelationContext() as correlation_id:
            assert str(uuid.UUID(correlation_id)) == correlation_id
            assert get_correlation_id() == correlation_id

        assert get_correlation_id() is None

    def test_context_uses_run_id(self):
        with CorrelationContext("20260101120000_ab12cd") as correlation_id:
            assert correlation_id == "20260101120000_ab12cd"
            assert get_correlation_id() == correlation_id

    def test_nested_contexts(self):
        """Test nested correlation contexts."""
        with CorrelationContext("outer"):
            with CorrelationContext("inner"):
                assert get_correlation_id() == "inner"

            assert get_correlation_id() == "outer"

        assert get_correlation_id() is None

    def test_context_resets_on_exception(self):
        with pytest.raises(RuntimeError):
            with CorrelationContext("failing-run"):
                raise RuntimeError("Test exception")

        assert get_correlation_id() is None

    def test_context_reaches_worker_threads(self):
        """Test that fanned-out tasks see the caller's correlation ID."""
        with CorrelationContext("run-42"):
            results = fan_out({"a": get_correlation_id, "b": get_correlation_id}, max_workers=2)

        assert results == {"a": "run-42", "b": "run-42"}


class TestCorrelationLogging:

    def test_correlation_id_filter_when_no_id(self):
        """Test correlation_id_filter when no correlation ID is set."""
        record = make_record()

        assert correlation_id_filter(record) is True
        assert record.correlation_id == "N/A"

    def test_correlation_id_filter_inside_context(self):
        record = make_record()

        with CorrelationContext("run-7"):
            correlation_id_filter(record)

        assert record.correlation_id == "run-7"

    def test_setup_correlation_logging(self):
        """Test setup_correlation_logging adds filter to handler."""
        handler = logging.NullHandler()

        setup_correlation_logging(handler)

        assert handler.filters == [correlation_id_filter]
