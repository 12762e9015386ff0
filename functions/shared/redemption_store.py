"""
Redemption Store - durable storage of redeemed ticket codes.

The validator only talks to the RedemptionStore interface:

- load()             read the whole collection (fail-open, never raises)
- save(records)      atomically replace the whole collection
- insert_if_absent() atomic per-key insert used by the redemption path
- put_record()       unconditional single-record write
- mutation_lock()    process-wide mutex serializing mutations

Backends:

- JsonFileRedemptionStore: one JSON document keyed by normalized code.
  Only the in-process lock protects it; two Lambda instances sharing a file
  can still lose each other's writes.
- DynamoDBRedemptionStore: one item per code. Conditional puts make
  insert_if_absent atomic across processes.

A load that hits unreadable or corrupt storage returns an empty mapping so
new redemptions keep working, but flips the store's `degraded` flag and emits
the RedemptionStoreDegraded metric so the condition is distinguishable from
a first run.
"""

import json
import logging
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional

from botocore.exceptions import ClientError

from shared.aws_clients import get_dynamodb
from shared.constants import DEFAULT_REDEMPTIONS_TABLE, DEFAULT_STORE_PATH
from shared.metrics import emit_metric
from shared.types import RedemptionRecord

logger = logging.getLogger(__name__)

# Serializes every mutation in this process (all store instances share it)
_MUTATION_LOCK = threading.RLock()

DEGRADED_METRIC = "RedemptionStoreDegraded"


class PersistenceError(Exception):
    """Raised when the redemption store cannot be durably written."""


class RedemptionStore:
    """Interface for full-collection storage of redemption records."""

    backend = "abstract"

    def __init__(self):
        self.degraded = False

    def load(self) -> Dict[str, RedemptionRecord]:
        raise NotImplementedError

    def save(self, records: Dict[str, RedemptionRecord]) -> None:
        raise NotImplementedError

    @contextmanager
    def mutation_lock(self) -> Iterator[None]:
        """Hold the process-wide mutation lock."""
        with _MUTATION_LOCK:
            yield

    def insert_if_absent(self, record: RedemptionRecord) -> bool:
        """
        Insert a record unless its code is already stored.

        Returns:
            True if the record was written, False if the code already exists

        Raises:
            PersistenceError: the store could not be written
        """
        with self.mutation_lock():
            records = self.load()
            if record["code"] in records:
                return False
            records[record["code"]] = record
            self.save(records)
            return True

    def put_record(self, record: RedemptionRecord) -> None:
        """Write a record, replacing any existing entry for its code."""
        with self.mutation_lock():
            records = self.load()
            records[record["code"]] = record
            self.save(records)

    def _mark_degraded(self, reason: str) -> None:
        self.degraded = True
        logger.error(
            f"Redemption store degraded, continuing with empty store: {reason}",
            extra={"store_backend": self.backend},
        )
        emit_metric(DEGRADED_METRIC, dimensions={"Backend": self.backend})


class JsonFileRedemptionStore(RedemptionStore):
    """Redemption records in a single JSON document on disk."""

    backend = "file"

    def __init__(self, path: Optional[str] = None):
        super().__init__()
        self.path = path or os.environ.get("REDEMPTION_STORE_PATH") or DEFAULT_STORE_PATH
        # Set while the document on disk is corrupt and not yet copied aside
        self._unsaved_corrupt_file = False

    def load(self) -> Dict[str, RedemptionRecord]:
        self.degraded = False
        self._unsaved_corrupt_file = False

        if not os.path.exists(self.path):
            logger.info(f"Redemption store {self.path} does not exist yet, starting empty")
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = f.read()
        except OSError as e:
            self._mark_degraded(f"cannot read {self.path}: {e}")
            return {}

        if not data.strip():
            logger.info(f"Redemption store {self.path} is empty, starting empty")
            return {}

        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as e:
            self._unsaved_corrupt_file = True
            self._mark_degraded(f"cannot parse {self.path}: {e}")
            return {}

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            self._unsaved_corrupt_file = True
            self._mark_degraded(f"{self.path} does not contain a JSON object")
            return {}

        return parsed

    def preserve_corrupt_file(self) -> Optional[str]:
        """
        Copy a corrupt document aside before it is overwritten.

        Returns:
            Path of the copy, or None if there was nothing to preserve

        Raises:
            PersistenceError: the copy failed, so the document must not be replaced
        """
        if not self._unsaved_corrupt_file or not os.path.exists(self.path):
            return None

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        backup_path = f"{self.path}.corrupt-{timestamp}"
        try:
            shutil.copy2(self.path, backup_path)
        except OSError as e:
            logger.error(f"Failed to copy corrupt redemption store {self.path} aside: {e}")
            raise PersistenceError("Corrupt redemption store could not be preserved") from e

        self._unsaved_corrupt_file = False
        logger.warning(f"Corrupt redemption store {self.path} copied to {backup_path}")
        return backup_path

    def save(self, records: Dict[str, RedemptionRecord]) -> None:
        self.preserve_corrupt_file()

        directory = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            # Write beside the target so os.replace stays on one filesystem
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=".used-codes-",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_path = f.name
                json.dump(records, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save redemption store {self.path}: {e}")
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise PersistenceError("Redemption store could not be saved") from e

        logger.info(f"Redemption store saved: {len(records)} entries")


class DynamoDBRedemptionStore(RedemptionStore):
    """Redemption records as DynamoDB items keyed by code."""

    backend = "dynamodb"

    def __init__(self, table_name: Optional[str] = None):
        super().__init__()
        self.table_name = (
            table_name or os.environ.get("REDEMPTIONS_TABLE") or DEFAULT_REDEMPTIONS_TABLE
        )

    @property
    def table(self):
        return get_dynamodb().Table(self.table_name)

    def load(self) -> Dict[str, RedemptionRecord]:
        self.degraded = False
        records: Dict[str, RedemptionRecord] = {}

        try:
            response = self.table.scan()
            items = response.get("Items", [])

            # Handle pagination
            while "LastEvaluatedKey" in response:
                response = self.table.scan(ExclusiveStartKey=response["LastEvaluatedKey"])
                items.extend(response.get("Items", []))
        except ClientError as e:
            self._mark_degraded(f"cannot scan {self.table_name}: {e}")
            return {}

        for item in items:
            records[item["code"]] = item
        return records

    def save(self, records: Dict[str, RedemptionRecord]) -> None:
        try:
            existing = set()
            response = self.table.scan(
                ProjectionExpression="#code",
                ExpressionAttributeNames={"#code": "code"},
            )
            existing.update(item["code"] for item in response.get("Items", []))
            while "LastEvaluatedKey" in response:
                response = self.table.scan(
                    ProjectionExpression="#code",
                    ExpressionAttributeNames={"#code": "code"},
                    ExclusiveStartKey=response["LastEvaluatedKey"],
                )
                existing.update(item["code"] for item in response.get("Items", []))

            with self.table.batch_writer() as batch:
                for code, record in records.items():
                    batch.put_item(Item={**record, "code": code})
                for code in existing - set(records):
                    batch.delete_item(Key={"code": code})
        except ClientError as e:
            logger.error(f"Failed to save redemption store {self.table_name}: {e}")
            raise PersistenceError("Redemption store could not be saved") from e

        logger.info(f"Redemption store saved: {len(records)} entries")

    def insert_if_absent(self, record: RedemptionRecord) -> bool:
        try:
            self.table.put_item(
                Item=record,
                ConditionExpression="attribute_not_exists(#code)",
                ExpressionAttributeNames={"#code": "code"},
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                logger.info(f"Code {record['code']} already redeemed (conditional put rejected)")
                return False
            logger.error(f"Failed to insert redemption {record['code']}: {e}")
            raise PersistenceError("Redemption could not be saved") from e
        return True

    def put_record(self, record: RedemptionRecord) -> None:
        try:
            self.table.put_item(Item=record)
        except ClientError as e:
            logger.error(f"Failed to write redemption {record['code']}: {e}")
            raise PersistenceError("Redemption could not be saved") from e


def get_redemption_store() -> RedemptionStore:
    """Build the store configured by REDEMPTION_STORE_BACKEND (file or dynamodb)."""
    backend = os.environ.get("REDEMPTION_STORE_BACKEND", "file").lower()
    if backend == "dynamodb":
        return DynamoDBRedemptionStore()
    if backend != "file":
        logger.warning(f"Unknown REDEMPTION_STORE_BACKEND {backend!r}, using file store")
    return JsonFileRedemptionStore()
