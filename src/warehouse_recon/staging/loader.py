"""
Staging Loader for Warehouse Reconciliation

Materializes flattened records into a uniquely named, expiring staging
relation and verifies the row count before any analysis runs against it.

Large inputs are inserted in sequential batches. A batch the store rejects
is retried in progressively smaller sub-batches down to a minimum size;
rows that still fail are skipped, logged and reported through
PartialInsertError so they are never counted as loaded.
"""

import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from warehouse_recon.config import ReconConfig
from warehouse_recon.errors import (
    InputValidationError,
    PartialInsertError,
    ReconError,
    StagingVerificationError,
    classify_store_error,
)
from warehouse_recon.models import FlatRecord, StagingHandle, validate_identifier, validate_relation_id
from warehouse_recon.store.base import StoreError, TabularStore
from warehouse_recon.store.query import QueryBuilder

logger = logging.getLogger(__name__)

RUN_ID_TIME_FORMAT = "%Y%m%d%H%M%S"


def generate_run_id(now: Optional[datetime] = None) -> str:
    """Run id of the form ``yyyymmddHHMMSS_<6 hex chars>`` (UTC)."""
    now = now or datetime.now(timezone.utc)
    return f"{now.strftime(RUN_ID_TIME_FORMAT)}_{uuid.uuid4().hex[:6]}"


def run_id_timestamp(run_id: str) -> Optional[datetime]:
    """Creation time embedded in a run id, or None if it has none."""
    try:
        return datetime.strptime(run_id[:14], RUN_ID_TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


class StagingLoader:
    """Creates, loads, verifies and removes staging relations."""

    def __init__(self, store: TabularStore, config: Optional[ReconConfig] = None, metrics=None):
        """
        Initialize the loader.

        Args:
            store: Warehouse store
            config: Engine configuration (defaults when omitted)
            metrics: Optional ReconciliationMetrics
        """
        self.store = store
        self.config = config or ReconConfig()
        self.metrics = metrics

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.config.staging_ttl_seconds)

    @property
    def relation_prefix(self) -> str:
        """Prefix shared by every staging relation id (schema-qualified if configured)."""
        if self.config.staging_schema:
            return f"{self.config.staging_schema}.{self.config.staging_prefix}"
        return self.config.staging_prefix

    def relation_id_for(self, run_id: str) -> str:
        """Staging relation id owned by ``run_id``."""
        name = f"{self.config.staging_prefix}{run_id}"
        validate_identifier(name, what="staging relation name")

        limit = self.store.max_identifier_length
        if len(name) > limit:
            raise InputValidationError(
                f"Staging relation name '{name}' exceeds {limit} characters",
                suggestions=["Use a shorter staging_prefix or run id"]
            )

        if self.config.staging_schema:
            validate_identifier(self.config.staging_schema, what="staging schema")
            return f"{self.config.staging_schema}.{name}"
        return name

    def load(
        self,
        flat_records: Sequence[FlatRecord],
        run_id: Optional[str] = None,
        key_field: Optional[str] = None
    ) -> StagingHandle:
        """
        Load flat records into a new staging relation.

        Args:
            flat_records: Normalized records
            run_id: Run identifier (generated when omitted)
            key_field: Field whose distinct/non-null counts are recorded

        Returns:
            StagingHandle for the verified relation

        Raises:
            InputValidationError: If there are no records or a name is invalid
            PartialInsertError: If rows were skipped after all retries
            StagingVerificationError: If the loaded count is wrong
            QueryExecutionError: If the store rejects a statement
        """
        if not flat_records:
            raise InputValidationError(
                "No records to stage",
                suggestions=["Check that the source produced at least one record"]
            )

        if key_field is not None:
            validate_identifier(key_field, what="key field")

        run_id = run_id or generate_run_id()
        relation_id = self.relation_id_for(run_id)

        fields = sorted({name for record in flat_records for name in record})
        for name in fields:
            validate_identifier(name, what="field name")

        rows = [{name: record.get(name) for name in fields} for record in flat_records]

        logger.info(f"Staging {len(rows)} records with {len(fields)} fields into {relation_id}")
        created_at = datetime.now(timezone.utc)

        try:
            self.store.create_table(relation_id, fields, self.ttl)
            batches_used, inserted, skipped = self._insert_all(relation_id, rows)

            if self.metrics:
                self.metrics.record_staging_load(inserted, skipped, batches_used)

            if skipped:
                raise PartialInsertError(
                    f"{skipped} of {len(rows)} rows could not be inserted into {relation_id}",
                    details={
                        "relation": relation_id,
                        "inserted": inserted,
                        "skipped": skipped,
                        "not_attempted": len(rows) - inserted - skipped,
                    }
                )

            record_count = self._verify_count(relation_id, len(rows))

            distinct_keys = non_null_keys = None
            if key_field is not None and key_field in fields:
                distinct_keys, non_null_keys = self._key_counts(relation_id, key_field)
            elif key_field is not None:
                logger.warning(f"Key field '{key_field}' not present in staged records")

        except ReconError:
            self._cleanup_after_failure(relation_id)
            raise
        except StoreError as e:
            self._cleanup_after_failure(relation_id)
            raise classify_store_error(e, "Staging load")

        logger.info(f"Staged {record_count} records into {relation_id} using {batches_used} batch(es)")

        return StagingHandle(
            relation_id=relation_id,
            record_count=record_count,
            batches_used=batches_used,
            fields=fields,
            created_at=created_at,
            expires_at=created_at + self.ttl,
            key_field=key_field,
            distinct_keys=distinct_keys,
            non_null_keys=non_null_keys,
        )

    def delete(self, relation_id: str) -> None:
        """
        Explicitly drop a staging relation.

        Raises:
            InputValidationError: If the relation id is malformed or does
                not name a staging relation
        """
        validate_relation_id(relation_id)

        name = relation_id.rsplit(".", 1)[-1]
        if not name.startswith(self.config.staging_prefix):
            raise InputValidationError(
                f"Refusing to drop '{relation_id}': not a staging relation",
                details={"relation": relation_id, "staging_prefix": self.config.staging_prefix},
                suggestions=[f"Only relations named '{self.config.staging_prefix}<run id>' can be dropped"]
            )

        try:
            self.store.delete_table(relation_id)
        except StoreError as e:
            raise classify_store_error(e, f"Deleting {relation_id}")
        logger.info(f"Deleted staging relation {relation_id}")

    def expire_stale(self, now: Optional[datetime] = None) -> List[str]:
        """
        Drop staging relations older than the TTL.

        The creation time is read from the run id embedded in the relation
        name; relations whose names carry no timestamp are left alone.

        Returns:
            Relation ids that were dropped
        """
        now = now or datetime.now(timezone.utc)
        expired = []

        try:
            candidates = self.store.list_tables(self.relation_prefix)
        except StoreError as e:
            raise classify_store_error(e, "Listing staging relations")

        for relation_id in candidates:
            name = relation_id.rsplit(".", 1)[-1]
            created_at = run_id_timestamp(name[len(self.config.staging_prefix):])
            if created_at is None:
                logger.debug(f"Skipping {relation_id}: no timestamp in name")
                continue

            if now - created_at > self.ttl:
                self.delete(relation_id)
                expired.append(relation_id)

        logger.info(f"Expired {len(expired)} stale staging relation(s)")
        return expired

    def _insert_all(self, relation_id: str, rows: List[Dict]) -> Tuple[int, int, int]:
        """
        Insert rows; returns (batches_used, inserted, skipped).

        Stops after the first batch that still has skipped rows once its
        retries are exhausted; later batches are not attempted.
        """
        batch_size = self.config.batch_size

        if len(rows) <= batch_size:
            inserted, skipped = self._insert_chunk(relation_id, rows, self.config.retry_chunk_size)
            return 1, inserted, skipped

        chunks = [rows[i:i + batch_size] for i in range(0, len(rows), batch_size)]
        logger.info(f"Inserting {len(rows)} rows in {len(chunks)} batches of up to {batch_size}")

        inserted = skipped = 0
        for index, chunk in enumerate(chunks, start=1):
            if index > 1 and self.config.inter_batch_delay:
                time.sleep(self.config.inter_batch_delay)

            chunk_inserted, chunk_skipped = self._insert_chunk(
                relation_id, chunk, self.config.retry_chunk_size
            )
            inserted += chunk_inserted
            skipped += chunk_skipped
            logger.debug(f"Batch {index}/{len(chunks)}: {chunk_inserted} inserted, {chunk_skipped} skipped")

            if chunk_skipped:
                logger.error(
                    f"Batch {index}/{len(chunks)} skipped {chunk_skipped} row(s); "
                    f"aborting load of {relation_id}"
                )
                return index, inserted, skipped

        return len(chunks), inserted, skipped

    def _insert_chunk(self, relation_id: str, rows: List[Dict], sub_size: int) -> Tuple[int, int]:
        """
        Insert a chunk, degrading to smaller sub-chunks on failure.

        Sub-chunks start at ``sub_size`` and halve at each level; a chunk at
        or below ``min_chunk_size`` that still fails is skipped.

        Returns:
            (inserted, skipped)
        """
        try:
            self.store.insert_rows(relation_id, rows)
            return len(rows), 0
        except StoreError as e:
            min_size = self.config.min_chunk_size
            if len(rows) <= min_size:
                logger.error(f"Skipping {len(rows)} row(s) rejected by {relation_id}: {e}")
                return 0, len(rows)

            size = sub_size if sub_size < len(rows) else max(min_size, len(rows) // 2)
            logger.warning(f"Insert of {len(rows)} rows failed ({e}); retrying in sub-batches of {size}")

        inserted = skipped = 0
        next_size = max(min_size, size // 2)
        for start in range(0, len(rows), size):
            part_inserted, part_skipped = self._insert_chunk(relation_id, rows[start:start + size], next_size)
            inserted += part_inserted
            skipped += part_skipped

        return inserted, skipped

    def _verify_count(self, relation_id: str, expected: int) -> int:
        if self.config.settle_delay:
            time.sleep(self.config.settle_delay)

        qb = QueryBuilder(self.store.placeholder)
        sql = f"SELECT COUNT(*) AS row_count FROM {qb.relation(relation_id)}"

        count = 0
        for attempt in range(1, self.config.verify_attempts + 1):
            count = int(self.store.execute_query(sql).scalar("row_count", 0))
            if count >= expected:
                break
            logger.info(f"Verification attempt {attempt}: {count}/{expected} rows visible")
            if attempt < self.config.verify_attempts and self.config.settle_delay:
                time.sleep(self.config.settle_delay * attempt)

        details = {"relation": relation_id, "expected": expected, "actual": count}
        if count == 0:
            raise StagingVerificationError(f"No rows found in {relation_id} after load", details=details)
        if count > expected:
            raise StagingVerificationError(
                f"{relation_id} holds {count} rows but only {expected} were sent (duplicated insert)",
                details=details
            )
        if count != expected:
            raise StagingVerificationError(
                f"{relation_id} holds {count} rows, expected {expected}",
                details=details
            )

        return count

    def _key_counts(self, relation_id: str, key_field: str) -> Tuple[int, int]:
        qb = QueryBuilder(self.store.placeholder)
        key = qb.ident(key_field)
        sql = (
            f"SELECT COUNT(DISTINCT {key}) AS distinct_keys, COUNT({key}) AS non_null_keys "
            f"FROM {qb.relation(relation_id)}"
        )
        result = self.store.execute_query(sql)
        return int(result.scalar("distinct_keys", 0)), int(result.scalar("non_null_keys", 0))

    def _cleanup_after_failure(self, relation_id: str) -> None:
        if not self.config.cleanup_on_failure:
            logger.info(f"Leaving {relation_id} in place for inspection")
            return

        try:
            self.store.delete_table(relation_id)
            logger.info(f"Dropped {relation_id} after failed load")
        except StoreError as e:
            logger.warning(f"Could not drop {relation_id} after failed load: {e}")
