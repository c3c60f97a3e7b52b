#!/usr/bin/env python3
"""
Warehouse Reconciliation Tool

Reconciles a JSON/JSONL file or a REST API payload against a warehouse
table and prints the report as JSON. The warehouse is PostgreSQL
(--dsn or RECON_WAREHOUSE_DSN) or a local SQLite file (--sqlite).

Usage:
    ./scripts/reconcile.py reconcile --file data.jsonl --table analytics.customers --key-field customer_id
    ./scripts/reconcile.py reconcile --url https://api.example.com/customers --table customers --key-field id
    ./scripts/reconcile.py stage --file data.json --key-field id
    ./scripts/reconcile.py schema --staging recon_stg_20260101120000_ab12cd --table customers
    ./scripts/reconcile.py duplicates --table customers --key-field id --include-rows
    ./scripts/reconcile.py cleanup --staging recon_stg_20260101120000_ab12cd
    ./scripts/reconcile.py expire
"""

import sys
import argparse
import logging
import json
from typing import Any, Dict, List, Optional

from warehouse_recon import ReconciliationEngine, ReconConfig, ReconError
from warehouse_recon.logging_config import configure_logging
from warehouse_recon.monitoring import ReconciliationMetrics, start_metrics_server
from warehouse_recon.sources import RecordBatch, fetch_api_records, read_records
from warehouse_recon.store.base import TabularStore
from warehouse_recon.store.sqlite import SqliteStore

logger = logging.getLogger("warehouse_recon.cli")


def build_store(args, config: ReconConfig) -> TabularStore:
    """Open the configured warehouse store."""
    if args.sqlite:
        return SqliteStore(args.sqlite)

    dsn = args.dsn or config.warehouse_dsn
    if not dsn:
        raise ReconError(
            "No warehouse configured",
            suggestions=["Pass --dsn, set RECON_WAREHOUSE_DSN, or use --sqlite for a local file"]
        )

    from warehouse_recon.store.postgres import PostgresStore
    return PostgresStore(dsn, max_connections=max(config.max_parallel_queries, 2))


def load_source(args) -> RecordBatch:
    if args.file:
        return read_records(args.file)

    headers = {}
    for header in args.header or []:
        name, _, value = header.partition(":")
        headers[name.strip()] = value.strip()
    return fetch_api_records(args.url, records_path=args.records_path, headers=headers)


def get_recommendation(summary: Dict[str, Any]) -> str:
    """Headline recommendation based on the report summary."""
    total = summary["total_source_records"]
    missing = summary["records_failed_to_reach_target"]

    if total == 0:
        return "No source records were analyzed"
    if missing == 0 and summary["total_field_issues"] == 0:
        return "No action needed - all source records reached the target"

    missing_pct = missing / total * 100
    if missing_pct < 1:
        return "Minor discrepancies detected - review the source-only keys"
    elif missing_pct < 5:
        return "Moderate discrepancies detected - investigate the load pipeline"
    else:
        return "Significant discrepancies detected - the target is missing a large share of records"


def run(args, engine: ReconciliationEngine) -> Dict[str, Any]:
    if args.command == "reconcile":
        batch = load_source(args)
        report = engine.reconcile(
            batch.records,
            target_relation=args.table,
            key_field=args.key_field,
            field_subset=args.fields,
            cleanup=True if args.cleanup else None
        )
        result = report.to_dict()
        result["source"] = {"format": batch.detected_format, "location": batch.source, "records": len(batch)}
        result["recommendation"] = get_recommendation(report.summary)
        return result

    if args.command == "stage":
        batch = load_source(args)
        handle = engine.load_staging(batch.records, key_field=args.key_field)
        return handle.to_dict()

    if args.command == "schema":
        return engine.common_fields(args.staging, args.table).to_dict()

    if args.command == "duplicates":
        if args.staging:
            return engine.duplicates_both(args.staging, args.table, args.key_field).to_dict()
        return engine.duplicates(args.table, args.key_field, include_rows=args.include_rows).to_dict()

    if args.command == "cleanup":
        engine.cleanup(args.staging)
        return {"dropped": args.staging}

    if args.command == "expire":
        return {"expired": engine.expire_stale()}

    raise ValueError(f"Unknown command: {args.command}")


def add_source_arguments(parser: argparse.ArgumentParser) -> None:
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", help="JSON or JSONL file")
    source.add_argument("--url", help="REST endpoint returning JSON")
    parser.add_argument("--records-path", help="Dotted path to the record array in the API response")
    parser.add_argument("--header", action="append", help="Extra API header, 'Name: value' (repeatable)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Warehouse Reconciliation Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    reconcile_parser = subparsers.add_parser("reconcile", help="Reconcile records against a table")
    add_source_arguments(reconcile_parser)
    reconcile_parser.add_argument("--table", required=True, help="Target relation (table or schema.table)")
    reconcile_parser.add_argument("--key-field", required=True, help="Join key field")
    reconcile_parser.add_argument("--fields", nargs="+", help="Fields to compare (default: all common)")
    reconcile_parser.add_argument("--cleanup", action="store_true", help="Drop the staging relation afterwards")

    stage_parser = subparsers.add_parser("stage", help="Load records into a staging relation only")
    add_source_arguments(stage_parser)
    stage_parser.add_argument("--key-field", help="Record key statistics for this field")

    schema_parser = subparsers.add_parser("schema", help="Compare staging and target fields")
    schema_parser.add_argument("--staging", required=True, help="Staging relation id")
    schema_parser.add_argument("--table", required=True, help="Target relation id")

    duplicates_parser = subparsers.add_parser("duplicates", help="Analyze duplicate keys")
    duplicates_parser.add_argument("--table", required=True, help="Relation to analyze")
    duplicates_parser.add_argument("--key-field", required=True, help="Key field")
    duplicates_parser.add_argument("--staging", help="Also analyze this staging relation (dual mode)")
    duplicates_parser.add_argument("--include-rows", action="store_true", help="Include duplicate rows")

    cleanup_parser = subparsers.add_parser("cleanup", help="Drop a staging relation")
    cleanup_parser.add_argument("--staging", required=True, help="Staging relation id")

    subparsers.add_parser("expire", help="Drop staging relations past their TTL")

    # Connection options
    parser.add_argument("--dsn", help="PostgreSQL DSN (default: RECON_WAREHOUSE_DSN)")
    parser.add_argument("--sqlite", help="Use a local SQLite database file instead of PostgreSQL")
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = ReconConfig.load(args.config)
        store = build_store(args, config)
    except (ReconError, ValueError) as e:
        logger.error(f"Error: {e}")
        return 1

    metrics = None
    if args.metrics_port:
        metrics = ReconciliationMetrics()
        start_metrics_server(args.metrics_port)

    engine = ReconciliationEngine(store, config, metrics=metrics)

    try:
        result = run(args, engine)
        print(json.dumps(result, indent=2, default=str))
        return 0

    except ReconError as e:
        logger.error(f"Error: {e.message}", exc_info=args.verbose)
        print(json.dumps({"error": e.to_dict()}, indent=2, default=str))
        return 1

    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        error = {"kind": "UNEXPECTED_ERROR", "message": str(e), "details": {"type": type(e).__name__}}
        print(json.dumps({"error": error}, indent=2, default=str))
        return 1

    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
