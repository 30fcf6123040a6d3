"""Queue processor: replays a user's pending operations against the store."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from ..errors import VersionConflict, is_retryable
from .dispatch import OperationApplier
from .models import OperationRecord, ProcessResult, SyncStatus, utc_now
from .queue import SyncQueueStore, fifo_key
from .state import ClientSyncStateTracker

logger = logging.getLogger("tether.sync.processor")

DEFAULT_BATCH_SIZE = 50
DEFAULT_MAX_RETRIES = 3
DEFAULT_CLAIM_TIMEOUT = 300


class QueueProcessor:
    """Runs bounded processing passes, one user at a time.

    A pass claims up to ``batch_size`` records (oldest first) by marking them
    IN_PROGRESS in one atomic write, applies them sequentially, and commits
    every final status in a second atomic write. Document writes are made per
    operation so one failure never blocks its siblings.

    Records left IN_PROGRESS by a pass that never committed are picked up
    again and count as one failed attempt. They are reclaimed at once when
    the user's ``sync_in_progress`` flag is clear, and otherwise only after
    ``claim_timeout`` seconds.
    """

    def __init__(
        self,
        queue: SyncQueueStore,
        applier: OperationApplier,
        state: ClientSyncStateTracker,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        claim_timeout: int = DEFAULT_CLAIM_TIMEOUT,
    ):
        self.queue = queue
        self.applier = applier
        self.state = state
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.claim_timeout = claim_timeout

    def process(self, user_id: str) -> ProcessResult:
        records = self._claimable(user_id)
        if not records:
            return ProcessResult(message="No pending operations")

        self.state.mark_in_progress(user_id)
        try:
            result = self._run_pass(records)
        finally:
            self.state.refresh(user_id)

        result.message = (
            f"{result.processed} processed, {result.failed} failed, "
            f"{result.conflicts} conflicts, {result.retried} to retry"
        )
        logger.info(
            "Processed sync queue for user %s: %s",
            user_id,
            result.message,
            extra={"extra": {"user_id": user_id, **_counts(result)}},
        )
        return result

    def _claimable(self, user_id: str) -> List[OperationRecord]:
        cutoff: Optional[datetime] = None
        if self.state.get(user_id).sync_in_progress:
            cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.claim_timeout)
        stale = [
            record for record in self.queue.in_progress(user_id)
            if _claim_expired(record, cutoff)
        ]
        pending = self.queue.pending(user_id, limit=self.batch_size)
        return sorted(stale + pending, key=fifo_key)[: self.batch_size]

    def _run_pass(self, records: List[OperationRecord]) -> ProcessResult:
        result = ProcessResult()
        for record in records:
            if record.status is SyncStatus.IN_PROGRESS:
                self._reclaim(record, result)
        self._claim([record for record in records if record.status is not SyncStatus.FAILED])

        batch = self.queue.store.batch()
        for record in records:
            if record.status is SyncStatus.IN_PROGRESS:
                self._apply_one(record, result)
            self.queue.stage(batch, record)
        batch.commit()
        return result

    def _claim(self, records: List[OperationRecord]) -> None:
        if not records:
            return
        claimed_at = utc_now()
        batch = self.queue.store.batch()
        for record in records:
            self.applier.prepare(record)
            record.status = SyncStatus.IN_PROGRESS
            record.claimed_at = claimed_at
            self.queue.stage(batch, record)
        batch.commit()

    def _reclaim(self, record: OperationRecord, result: ProcessResult) -> None:
        """Count an unfinished earlier attempt against the retry ceiling."""
        record.retry_count += 1
        record.last_error = "Processing pass did not complete"
        record.last_retry_at = utc_now()
        if record.retry_count < self.max_retries:
            logger.warning(
                "Reclaiming operation %s from an unfinished pass (attempt %d/%d)",
                record.id,
                record.retry_count,
                self.max_retries,
            )
            return

        record.status = SyncStatus.FAILED
        record.error = record.last_error
        record.failed_at = record.last_retry_at
        result.failed += 1
        logger.error(
            "Operation %s failed permanently after %d unfinished pass(es)",
            record.id,
            record.retry_count,
        )

    def _apply_one(self, record: OperationRecord, result: ProcessResult) -> None:
        try:
            self.applier.apply(record)
        except VersionConflict as exc:
            record.status = SyncStatus.CONFLICT
            record.error = exc.message
            record.failed_at = utc_now()
            if exc.conflict is not None:
                record.conflict_id = exc.conflict.id
                record.server_version = exc.conflict.server_version
                result.conflict_details.append(exc.conflict)
            logger.info("Operation %s stopped on a version conflict", record.id)
        except Exception as exc:
            self._record_failure(record, exc, result)
        else:
            record.status = SyncStatus.COMPLETED
            record.completed_at = utc_now()
            result.processed += 1

    def _record_failure(
        self,
        record: OperationRecord,
        exc: Exception,
        result: ProcessResult,
    ) -> None:
        message = str(exc) or exc.__class__.__name__
        record.retry_count += 1

        if is_retryable(exc) and record.retry_count < self.max_retries:
            record.status = SyncStatus.PENDING
            record.last_error = message
            record.last_retry_at = utc_now()
            result.retried += 1
            logger.warning(
                "Operation %s failed (attempt %d/%d), will retry: %s",
                record.id,
                record.retry_count,
                self.max_retries,
                message,
            )
            return

        record.status = SyncStatus.FAILED
        record.error = message
        record.failed_at = utc_now()
        result.failed += 1
        logger.error(
            "Operation %s failed permanently after %d attempt(s): %s",
            record.id,
            record.retry_count,
            message,
        )


def _claim_expired(record: OperationRecord, cutoff: Optional[datetime]) -> bool:
    if cutoff is None or not record.claimed_at:
        return True
    try:
        return datetime.fromisoformat(record.claimed_at) <= cutoff
    except ValueError:
        return True


def _counts(result: ProcessResult) -> dict:
    return {
        "processed": result.processed,
        "failed": result.failed,
        "conflicts": result.conflicts,
        "retried": result.retried,
    }


__all__ = [
    "QueueProcessor",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_CLAIM_TIMEOUT",
    "DEFAULT_MAX_RETRIES",
]
