"""
Logging Configuration for Warehouse Reconciliation

Human-readable console logging by default; one JSON object per line when
``JSON_LOGGING=true`` (or ``json_logging=True``) for log shippers.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from warehouse_recon.utils.correlation import setup_correlation_logging

# Extra record attributes copied into JSON log lines
EXTRA_FIELDS = ("run_id", "relation", "duration_seconds")


class StructuredJSONFormatter(logging.Formatter):
    """JSON formatter with correlation ID support."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', 'N/A'),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(level: int = logging.INFO, json_logging: Optional[bool] = None) -> logging.Handler:
    """
    Configure the ``warehouse_recon`` logger hierarchy.

    Args:
        level: Log level
        json_logging: Emit JSON lines; read from JSON_LOGGING when None

    Returns:
        The installed handler
    """
    if json_logging is None:
        json_logging = os.getenv('JSON_LOGGING', 'false').lower() == 'true'

    handler = logging.StreamHandler()
    if json_logging:
        handler.setFormatter(StructuredJSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(correlation_id)s] %(name)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
    setup_correlation_logging(handler)

    package_logger = logging.getLogger('warehouse_recon')
    for existing in list(package_logger.handlers):
        package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = False

    return handler
