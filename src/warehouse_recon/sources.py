"""
Record Sources for Warehouse Reconciliation

Produce the ordered raw records a reconciliation run consumes, together
with a detected-format label: JSON/JSONL files and REST API responses.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from warehouse_recon.errors import InputValidationError

logger = logging.getLogger(__name__)

# Keys of a wrapper object that may hold the record array
RECORD_CONTAINER_KEYS = ("result", "records", "data", "items")


@dataclass
class RecordBatch:
    """Raw records plus where they came from."""

    records: List[Any]
    detected_format: str
    source: str

    def __len__(self) -> int:
        return len(self.records)


def extract_records(payload: Any, records_path: Optional[str] = None) -> List[Any]:
    """
    Locate the record array in a parsed JSON payload.

    Args:
        payload: Parsed JSON document
        records_path: Dotted path to the array (e.g. ``response.rows``);
            auto-detected when omitted

    Returns:
        List of raw records (a lone object becomes a single record)

    Raises:
        InputValidationError: If ``records_path`` does not lead to an array
    """
    if records_path:
        node = payload
        for part in records_path.split("."):
            if not isinstance(node, dict) or part not in node:
                raise InputValidationError(
                    f"Records path '{records_path}' not found in payload",
                    details={"records_path": records_path}
                )
            node = node[part]
        if not isinstance(node, list):
            raise InputValidationError(f"Records path '{records_path}' does not point to an array")
        return node

    if isinstance(payload, list):
        return payload

    if isinstance(payload, dict):
        for key in RECORD_CONTAINER_KEYS:
            if isinstance(payload.get(key), list):
                return payload[key]
        return [payload]

    return [payload]


def _parses(line: str) -> bool:
    try:
        json.loads(line)
        return True
    except ValueError:
        return False


def read_records(path: str) -> RecordBatch:
    """
    Read a JSON or JSONL file.

    The file is treated as JSONL when its first two non-empty lines each
    parse as JSON; unparsable JSONL lines are logged and skipped.

    Raises:
        InputValidationError: If the file cannot be read or parsed
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise InputValidationError(f"Could not read {path}: {e}")

    lines = [line for line in content.splitlines() if line.strip()]
    if not lines:
        raise InputValidationError(f"{path} is empty")

    if len(lines) >= 2 and _parses(lines[0]) and _parses(lines[1]):
        records = []
        for number, line in enumerate(lines, start=1):
            try:
                records.append(json.loads(line))
            except ValueError as e:
                logger.warning(f"Skipping unparsable line {number} in {path}: {e}")
        logger.info(f"Read {len(records)} records from {path} (JSONL)")
        return RecordBatch(records=records, detected_format="JSONL", source=path)

    try:
        payload = json.loads(content)
    except ValueError as e:
        raise InputValidationError(
            f"Invalid JSON format in {path}: {e}",
            suggestions=["Provide a JSON array, a JSON object or one JSON object per line"]
        )

    records = extract_records(payload)
    logger.info(f"Read {len(records)} records from {path} (JSON)")
    return RecordBatch(records=records, detected_format="JSON", source=path)


def fetch_api_records(
    url: str,
    records_path: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 30
) -> RecordBatch:
    """
    Fetch records from a REST endpoint returning JSON.

    Args:
        url: Endpoint URL
        records_path: Dotted path to the record array (auto-detected when None)
        headers: Extra request headers (e.g. Authorization)
        timeout: Request timeout in seconds

    Returns:
        RecordBatch labelled ``API``

    Raises:
        InputValidationError: On HTTP errors or non-JSON responses
    """
    request_headers = {"Accept": "application/json"}
    request_headers.update(headers or {})

    try:
        response = requests.get(url, headers=request_headers, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise InputValidationError(
            f"API request to {url} failed: {e}",
            details={"url": url},
            suggestions=["Check the URL and credentials", "Verify the API is reachable"]
        )

    content_type = response.headers.get("Content-Type", "")
    if "text/html" in content_type.lower():
        raise InputValidationError(
            f"API returned Content-Type {content_type} (expected application/json)",
            details={"url": url}
        )

    try:
        payload = response.json()
    except ValueError as e:
        raise InputValidationError(f"API response from {url} is not valid JSON: {e}", details={"url": url})

    records = extract_records(payload, records_path)
    logger.info(f"Fetched {len(records)} records from {url}")
    return RecordBatch(records=records, detected_format="API", source=url)
