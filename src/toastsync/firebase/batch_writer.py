"""Chunked, retrying batch writes of snapshot documents to Firestore.

A snapshot is one root document (metadata, manifest and optional rankings)
plus one document per district in a ``districts`` subcollection. The root is
written alone first; if it cannot be written nothing else is attempted.
District documents are then chunked into batches and committed a window of
batches at a time, each batch retrying independently with exponential
backoff and jitter on transient errors.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, Sequence, TypeVar

from toastsync.config import BatchWriteConfig
from toastsync.errors import (
    BatchTimeoutError,
    ErrorKind,
    RootBatchFailedError,
    StorageOperationError,
    classify_error,
    describe_error,
    error_code,
)
from toastsync.timestamps import utc_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")

SNAPSHOT_ID_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DISTRICT_ID_PATTERN = re.compile(r"^[A-Za-z0-9]+$")
FAILED_DISTRICT_MESSAGE = "Failed to write district document after retries"

class WriteBatch(Protocol):
    """An atomic set of document writes."""

    def set(self, collection_path: str, document_id: str, payload: dict[str, Any]) -> None: ...

    async def commit(self) -> None: ...

class DocumentStore(Protocol):
    """The slice of a document database the batch writer needs."""

    def batch(self) -> WriteBatch: ...

    async def update(self, collection_path: str, document_id: str, fields: dict[str, Any]) -> None: ...

    async def get(self, collection_path: str, document_id: str) -> dict[str, Any] | None: ...

@dataclass
class BatchUnit:
    """A prepared batch and the district ids staged into it."""

    batch: WriteBatch
    district_ids: list[str] = field(default_factory=list)

    @property
    def operation_count(self) -> int:
        return len(self.district_ids) or 1

@dataclass
class BatchResult:
    """Outcome of committing one batch, retries included."""

    batch_index: int
    operation_count: int
    success: bool
    retry_attempts: int
    duration_ms: int
    error: str | None = None
    district_ids: list[str] | None = None

@dataclass
class SnapshotWriteResult:
    """Aggregate outcome of writing a whole snapshot."""

    snapshot_id: str
    complete: bool
    total_batches: int
    successful_batches: int
    failed_batches: int
    districts_written: int
    failed_districts: list[str] = field(default_factory=list)
    total_duration_ms: int = 0
    batch_results: list[BatchResult] = field(default_factory=list)

def chunk_entities(entities: Sequence[T], max_per_batch: int) -> list[list[T]]:
    """
    Split entities into consecutive chunks of at most max_per_batch items.

    Order is preserved within and across chunks. No entities gives no chunks.
    """
    if max_per_batch < 1:
        raise ValueError(f"max_per_batch must be >= 1, got {max_per_batch}")
    return [list(entities[i : i + max_per_batch]) for i in range(0, len(entities), max_per_batch)]

def calculate_backoff_delay(
    attempt: int,
    config: BatchWriteConfig,
    random_fn: Callable[[], float] = random.random,
) -> float:
    """
    Delay in milliseconds before retry number ``attempt + 1``.

    The exponential base is capped at max_backoff_ms and then scaled by a
    jitter multiplier drawn uniformly from [1 - jitter, 1 + jitter].
    """
    base = min(config.initial_backoff_ms * 2**attempt, config.max_backoff_ms)
    jitter_multiplier = 1 + (random_fn() * 2 - 1) * config.jitter_factor
    return base * jitter_multiplier

def validate_snapshot_id(snapshot_id: str) -> None:
    if not isinstance(snapshot_id, str) or not snapshot_id:
        raise StorageOperationError(
            "Invalid snapshot ID: empty or non-string value", "validateSnapshotId"
        )
    if not SNAPSHOT_ID_PATTERN.match(snapshot_id):
        raise StorageOperationError(
            f"Invalid snapshot ID format: {snapshot_id}. Expected YYYY-MM-DD",
            "validateSnapshotId",
        )

def validate_district_id(district_id: str) -> None:
    if not isinstance(district_id, str) or not district_id:
        raise StorageOperationError(
            "Invalid district ID: empty or non-string value", "validateDistrictId"
        )
    if not DISTRICT_ID_PATTERN.match(district_id):
        raise StorageOperationError(
            f"Invalid district ID format: {district_id}", "validateDistrictId"
        )

class BatchWriteEngine:
    """
    Writes snapshots as a root batch followed by concurrent district batches.

    Args:
        store: Document store used to create and commit batches
        config: Batch sizing, concurrency, timeout and retry policy
        collection: Name of the top-level snapshots collection
        random_fn: Source of jitter in [0, 1)
        sleep: Coroutine used for backoff delays (seconds)
        clock: Monotonic clock in seconds, used for durations
    """

    def __init__(
        self,
        store: DocumentStore,
        config: BatchWriteConfig | None = None,
        collection: str = "snapshots",
        random_fn: Callable[[], float] = random.random,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.config = config or BatchWriteConfig()
        self.collection = collection
        self._random = random_fn
        self._sleep = sleep
        self._clock = clock

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)

    def districts_collection(self, snapshot_id: str) -> str:
        return f"{self.collection}/{snapshot_id}/districts"

    async def _commit_with_timeout(self, batch: WriteBatch, batch_index: int) -> None:
        timeout_ms = self.config.batch_timeout_ms
        try:
            await asyncio.wait_for(batch.commit(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise BatchTimeoutError(batch_index, timeout_ms) from e

    async def execute_with_retry(self, unit: BatchUnit, batch_index: int) -> BatchResult:
        """
        Commit a batch, retrying transient failures with backoff.

        Makes at most max_retries + 1 attempts. A non-retryable error ends the
        sequence at once without consuming a retry.
        """
        start = self._clock()
        max_retries = self.config.max_retries
        district_ids = list(unit.district_ids) if unit.district_ids else None
        retry_attempts = 0
        last_error: BaseException | None = None

        while retry_attempts <= max_retries:
            try:
                await self._commit_with_timeout(unit.batch, batch_index)
            except Exception as e:
                last_error = e
                message = describe_error(e)

                if classify_error(e) is not ErrorKind.TRANSIENT:
                    logger.error(
                        "Batch %d failed with non-retryable error (code=%s): %s",
                        batch_index,
                        error_code(e),
                        message,
                    )
                    return BatchResult(
                        batch_index=batch_index,
                        operation_count=unit.operation_count,
                        success=False,
                        retry_attempts=retry_attempts,
                        duration_ms=self._elapsed_ms(start),
                        error=message,
                        district_ids=district_ids,
                    )

                if retry_attempts >= max_retries:
                    logger.error(
                        "Batch %d failed after exhausting %d retries: %s",
                        batch_index,
                        max_retries,
                        message,
                    )
                    return BatchResult(
                        batch_index=batch_index,
                        operation_count=unit.operation_count,
                        success=False,
                        retry_attempts=retry_attempts,
                        duration_ms=self._elapsed_ms(start),
                        error=f"Failed after {retry_attempts} retries: {message}",
                        district_ids=district_ids,
                    )

                delay_ms = calculate_backoff_delay(retry_attempts, self.config, self._random)
                logger.warning(
                    "Batch %d failed (code=%s), retry %d/%d in %dms: %s",
                    batch_index,
                    error_code(e),
                    retry_attempts + 1,
                    max_retries,
                    round(delay_ms),
                    message,
                )
                await self._sleep(delay_ms / 1000)
                retry_attempts += 1
                continue

            logger.debug(
                "Batch %d committed (%d operations, %d retries)",
                batch_index,
                unit.operation_count,
                retry_attempts,
            )
            return BatchResult(
                batch_index=batch_index,
                operation_count=unit.operation_count,
                success=True,
                retry_attempts=retry_attempts,
                duration_ms=self._elapsed_ms(start),
                district_ids=district_ids,
            )

        # Only reachable if max_retries is negative
        return BatchResult(
            batch_index=batch_index,
            operation_count=unit.operation_count,
            success=False,
            retry_attempts=retry_attempts,
            duration_ms=self._elapsed_ms(start),
            error=describe_error(last_error),
            district_ids=district_ids,
        )

    async def process_batches_with_concurrency(
        self, units: Sequence[BatchUnit], start_index: int = 1
    ) -> list[BatchResult]:
        """
        Run batches in windows of max_concurrent_batches.

        Each window is awaited as a whole before the next starts. A failing
        batch never affects its siblings. Results come back ordered by batch
        index, whatever order they completed in.
        """
        window_size = self.config.max_concurrent_batches
        results: list[BatchResult] = []

        logger.info(
            "Processing %d batches, %d at a time (starting at index %d)",
            len(units),
            window_size,
            start_index,
        )

        for offset in range(0, len(units), window_size):
            window = units[offset : offset + window_size]
            indices = [start_index + offset + i for i in range(len(window))]
            settled = await asyncio.gather(
                *(self.execute_with_retry(unit, index) for unit, index in zip(window, indices)),
                return_exceptions=True,
            )

            for unit, index, outcome in zip(window, indices, settled):
                if isinstance(outcome, BatchResult):
                    results.append(outcome)
                    continue
                message = describe_error(outcome)
                logger.error("Unexpected rejection for batch %d: %s", index, message)
                results.append(
                    BatchResult(
                        batch_index=index,
                        operation_count=unit.operation_count,
                        success=False,
                        retry_attempts=0,
                        duration_ms=0,
                        error=f"Unexpected rejection: {message}",
                        district_ids=list(unit.district_ids) or None,
                    )
                )

        results.sort(key=lambda r: r.batch_index)
        return results

    def build_district_units(
        self, snapshot_id: str, districts: Sequence[dict[str, Any]]
    ) -> list[BatchUnit]:
        """Chunk district payloads into batches of district documents."""
        collection_path = self.districts_collection(snapshot_id)
        collected_at = utc_timestamp()
        units = []

        for chunk in chunk_entities(districts, self.config.max_operations_per_batch):
            batch = self.store.batch()
            district_ids = []
            for district in chunk:
                district_id = str(district["districtId"])
                batch.set(
                    collection_path,
                    f"district_{district_id}",
                    {
                        "districtId": district_id,
                        "districtName": f"District {district_id}",
                        "collectedAt": collected_at,
                        "status": "success",
                        "data": district,
                    },
                )
                district_ids.append(district_id)
            units.append(BatchUnit(batch=batch, district_ids=district_ids))

        logger.debug(
            "Chunked %d districts into %d batches: %s",
            len(districts),
            len(units),
            [len(u.district_ids) for u in units],
        )
        return units

    async def write_snapshot(
        self,
        snapshot_id: str,
        root_document: dict[str, Any],
        districts: Sequence[dict[str, Any]],
    ) -> SnapshotWriteResult:
        """
        Write a snapshot: root document first, then district documents.

        Args:
            snapshot_id: Snapshot date (YYYY-MM-DD), used as the document id
            root_document: Root payload (metadata, manifest, rankings)
            districts: District statistics, each carrying a ``districtId``

        Returns:
            SnapshotWriteResult describing every batch

        Raises:
            RootBatchFailedError: If the root document could not be written
            StorageOperationError: If an id is malformed
        """
        validate_snapshot_id(snapshot_id)
        for district in districts:
            validate_district_id(str(district.get("districtId", "")))

        start = self._clock()
        logger.info(
            "Writing snapshot %s: %d districts (batch size %d, %d concurrent, %d retries)",
            snapshot_id,
            len(districts),
            self.config.max_operations_per_batch,
            self.config.max_concurrent_batches,
            self.config.max_retries,
        )

        root_batch = self.store.batch()
        root_batch.set(self.collection, snapshot_id, root_document)
        root_result = await self.execute_with_retry(BatchUnit(batch=root_batch), 0)

        if not root_result.success:
            logger.error(
                "Root document batch failed for snapshot %s, no districts written: %s",
                snapshot_id,
                root_result.error,
            )
            raise RootBatchFailedError(snapshot_id, root_result.retry_attempts, root_result.error)

        batch_results = [root_result]
        if districts:
            units = self.build_district_units(snapshot_id, districts)
            batch_results.extend(await self.process_batches_with_concurrency(units, start_index=1))
        else:
            logger.info("Snapshot %s has no district documents", snapshot_id)

        successful_ids: list[str] = []
        failed_ids: list[str] = []
        for result in batch_results:
            if result.district_ids:
                (successful_ids if result.success else failed_ids).extend(result.district_ids)

        failed_batches = sum(1 for r in batch_results if not r.success)
        write_result = SnapshotWriteResult(
            snapshot_id=snapshot_id,
            complete=failed_batches == 0,
            total_batches=len(batch_results),
            successful_batches=len(batch_results) - failed_batches,
            failed_batches=failed_batches,
            districts_written=len(successful_ids),
            failed_districts=failed_ids,
            total_duration_ms=self._elapsed_ms(start),
            batch_results=batch_results,
        )

        await self._record_write_status(root_document, write_result, successful_ids)
        return write_result

    async def _record_write_status(
        self,
        root_document: dict[str, Any],
        result: SnapshotWriteResult,
        successful_ids: list[str],
    ) -> None:
        """Stamp the root document with the completeness flag. Failures are logged only."""
        if result.complete:
            fields: dict[str, Any] = {"metadata.writeComplete": True}
        else:
            fields = {
                "metadata.writeComplete": False,
                "metadata.writeFailedDistricts": result.failed_districts,
                "metadata.failedDistricts": result.failed_districts,
                "metadata.successfulDistricts": successful_ids,
            }
            manifest = root_document.get("manifest")
            if isinstance(manifest, dict):
                failed = set(result.failed_districts)
                entries = manifest.get("districts")
                if isinstance(entries, list):
                    fields["manifest.districts"] = [
                        {**entry, "status": "failed", "errorMessage": FAILED_DISTRICT_MESSAGE}
                        if isinstance(entry, dict) and entry.get("districtId") in failed
                        else entry
                        for entry in entries
                    ]
                fields["manifest.successfulDistricts"] = result.districts_written
                fields["manifest.failedDistricts"] = len(result.failed_districts)

        if result.complete:
            logger.info(
                "Snapshot %s written: %d batches, %d districts in %dms",
                result.snapshot_id,
                result.total_batches,
                result.districts_written,
                result.total_duration_ms,
            )
        else:
            logger.warning(
                "Snapshot %s partially written: %d/%d batches failed, failed districts %s",
                result.snapshot_id,
                result.failed_batches,
                result.total_batches,
                result.failed_districts,
            )

        try:
            await self.store.update(self.collection, result.snapshot_id, fields)
        except Exception as e:
            logger.error(
                "Failed to record write status for snapshot %s: %s",
                result.snapshot_id,
                describe_error(e),
            )

    async def is_write_complete(self, snapshot_id: str) -> bool:
        """
        Whether a stored snapshot was fully written.

        Snapshots written before the completeness flag existed have no flag and
        count as complete. A missing snapshot or a read error counts as not
        complete.
        """
        try:
            document = await self.store.get(self.collection, snapshot_id)
        except Exception as e:
            logger.warning(
                "Could not read write status for snapshot %s: %s", snapshot_id, describe_error(e)
            )
            return False

        if document is None:
            return False
        metadata = document.get("metadata") or {}
        return metadata.get("writeComplete") is not False
