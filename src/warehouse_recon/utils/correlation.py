"""
Correlation ID Utility for Warehouse Reconciliation

Every reconciliation run executes inside a correlation context keyed by
its run id, so log lines from all stages (including worker threads) can
be tied back to one run.
"""

import uuid
import contextvars
from typing import Optional
import logging

logger = logging.getLogger(__name__)

# Context variable for correlation ID
_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id',
    default=None
)


def generate_correlation_id() -> str:
    """
    Generate a new correlation ID using UUID4.

    Returns:
        String representation of a UUID4
    """
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    """Current correlation ID, or None outside any context."""
    return _correlation_id.get()


class CorrelationContext:
    """
    Context manager scoping a correlation ID to one run.

    Usage:
        with CorrelationContext(run_id):
            engine.reconcile(...)
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id
        self._token = None

    def __enter__(self) -> str:
        if not self.correlation_id:
            self.correlation_id = generate_correlation_id()

        self._token = _correlation_id.set(self.correlation_id)
        logger.debug(f"Entered correlation context: {self.correlation_id}")
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id.reset(self._token)
        self._token = None


def correlation_id_filter(record):
    """
    Logging filter adding ``correlation_id`` to log records.

    Returns:
        True (always allow record)
    """
    record.correlation_id = get_correlation_id() or "N/A"
    return True


def setup_correlation_logging(handler: logging.Handler) -> None:
    """Attach the correlation filter to a handler."""
    handler.addFilter(correlation_id_filter)
