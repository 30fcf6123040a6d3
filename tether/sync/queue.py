"""Persisted per-user queue of operation records."""

from __future__ import annotations

import logging
import threading
import time
from typing import List, Optional, Sequence, Tuple

from ..errors import NotFound
from ..store import DocumentStore, WriteBatch
from .models import SYNC_QUEUE_COLLECTION, OperationRecord, SyncStatus

logger = logging.getLogger("tether.sync.queue")

FIFO_ORDER = ("timestamp", "sequence")

_sequence_lock = threading.Lock()
_last_sequence = 0


def fifo_key(record: OperationRecord) -> Tuple[str, int]:
    return record.timestamp, record.sequence


def next_sequence() -> int:
    """Monotonic tie-breaker for records enqueued within the same timestamp."""
    global _last_sequence
    with _sequence_lock:
        _last_sequence = max(time.time_ns(), _last_sequence + 1)
        return _last_sequence


class SyncQueueStore:
    """Reads and writes operation records, always scoped to one user."""

    def __init__(self, store: DocumentStore, collection: str = SYNC_QUEUE_COLLECTION):
        self.store = store
        self.collection = collection

    def new_id(self) -> str:
        return self.store.create_id()

    def add(self, record: OperationRecord) -> str:
        self.store.set(self.collection, record.id, record.to_dict())
        return record.id

    def add_many(self, records: Sequence[OperationRecord]) -> List[str]:
        """Persist all records in one atomic batch."""
        batch = self.store.batch()
        for record in records:
            batch.set(self.collection, record.id, record.to_dict())
        batch.commit()
        return [record.id for record in records]

    def get(self, user_id: str, operation_id: str) -> OperationRecord:
        data = self.store.get(self.collection, operation_id)
        if data is None or data.get("user_id") != user_id:
            raise NotFound(f"Operation '{operation_id}' not found")
        return OperationRecord.from_dict(operation_id, data)

    def save(self, record: OperationRecord) -> None:
        self.store.set(self.collection, record.id, record.to_dict())

    def stage(self, batch: WriteBatch, record: OperationRecord) -> None:
        batch.set(self.collection, record.id, record.to_dict())

    def list(
        self,
        user_id: str,
        status: Optional[SyncStatus] = None,
        limit: Optional[int] = None,
    ) -> List[OperationRecord]:
        where = {"user_id": user_id}
        if status is not None:
            where["status"] = status.value
        rows = self.store.query(self.collection, where, order_by=FIFO_ORDER, limit=limit)
        return [OperationRecord.from_dict(doc_id, data) for doc_id, data in rows]

    def pending(self, user_id: str, limit: Optional[int] = None) -> List[OperationRecord]:
        """Oldest-first PENDING records; the only records a pass may pick up."""
        return self.list(user_id, SyncStatus.PENDING, limit)

    def in_progress(self, user_id: str) -> List[OperationRecord]:
        return self.list(user_id, SyncStatus.IN_PROGRESS)

    def next_pending(self, user_id: str) -> Optional[OperationRecord]:
        records = self.pending(user_id, limit=1)
        return records[0] if records else None

    def count(self, user_id: str, status: SyncStatus) -> int:
        return self.store.count(self.collection, {"user_id": user_id, "status": status.value})

    def clear_pending(self, user_id: str) -> int:
        """Delete the user's PENDING records; terminal records are kept."""
        records = self.pending(user_id)
        if not records:
            return 0
        batch = self.store.batch()
        for record in records:
            batch.delete(self.collection, record.id)
        batch.commit()
        logger.info("Cleared %d pending operation(s) for user %s", len(records), user_id)
        return len(records)


__all__ = ["SyncQueueStore", "SYNC_QUEUE_COLLECTION", "fifo_key", "next_sequence"]
