"""Per-user client sync state, recomputed from the queue."""

from __future__ import annotations

import logging
from typing import Optional

from ..store import DocumentStore
from .models import SYNC_STATES_COLLECTION, ClientSyncState, SyncStatus, utc_now
from .queue import SyncQueueStore

logger = logging.getLogger("tether.sync.state")


class ClientSyncStateTracker:
    """Keeps one state document per user.

    Counts are always re-derived from the queue rather than incremented, so a
    crashed pass can never leave them drifting.
    """

    def __init__(self, store: DocumentStore, queue: SyncQueueStore):
        self.store = store
        self.queue = queue

    def get(self, user_id: str) -> ClientSyncState:
        data = self.store.get(SYNC_STATES_COLLECTION, user_id)
        if data is None:
            return ClientSyncState(user_id=user_id)
        return ClientSyncState.from_dict(user_id, data)

    def mark_in_progress(self, user_id: str) -> None:
        self.store.set(SYNC_STATES_COLLECTION, user_id, {"sync_in_progress": True}, merge=True)

    def refresh(self, user_id: str, device_id: Optional[str] = None) -> ClientSyncState:
        """Recount pending/failed records and stamp the sync time."""
        update = {
            "last_sync_timestamp": utc_now(),
            "pending_operations": self.queue.count(user_id, SyncStatus.PENDING),
            "failed_operations": self.queue.count(user_id, SyncStatus.FAILED),
            "sync_in_progress": False,
        }
        if device_id:
            update["device_id"] = device_id

        self.store.set(SYNC_STATES_COLLECTION, user_id, update, merge=True)
        logger.debug("Refreshed sync state for user %s: %s", user_id, update)
        return self.get(user_id)


__all__ = ["ClientSyncStateTracker", "SYNC_STATES_COLLECTION"]
