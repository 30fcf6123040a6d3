"""Offline operation queue, conflict detection and resolution for Tether."""

from __future__ import annotations

from .models import (
    OperationType,
    SyncStatus,
    ConflictStrategy,
    SubOperationType,
    DocumentPayload,
    SubOperation,
    BatchPayload,
    OperationRecord,
    SyncConflict,
    ConflictResolution,
    ClientSyncState,
    SyncQueueStatus,
    ProcessResult,
    DetectionResult,
)
from .queue import SyncQueueStore, SYNC_QUEUE_COLLECTION
from .conflict import ConflictDetector, ConflictStore, CONFLICTS_COLLECTION, RESOLUTIONS_COLLECTION
from .resolver import ConflictResolver
from .state import ClientSyncStateTracker, SYNC_STATES_COLLECTION
from .dispatch import OperationApplier
from .processor import QueueProcessor
from .engine import SyncEngine, SyncSettings, OperationRequest

__all__ = [
    # Models
    "OperationType",
    "SyncStatus",
    "ConflictStrategy",
    "SubOperationType",
    "DocumentPayload",
    "SubOperation",
    "BatchPayload",
    "OperationRecord",
    "SyncConflict",
    "ConflictResolution",
    "ClientSyncState",
    "SyncQueueStatus",
    "ProcessResult",
    "DetectionResult",
    # Queue
    "SyncQueueStore",
    "SYNC_QUEUE_COLLECTION",
    # Conflicts
    "ConflictDetector",
    "ConflictStore",
    "ConflictResolver",
    "CONFLICTS_COLLECTION",
    "RESOLUTIONS_COLLECTION",
    # State
    "ClientSyncStateTracker",
    "SYNC_STATES_COLLECTION",
    # Processing
    "OperationApplier",
    "QueueProcessor",
    # Engine
    "SyncEngine",
    "SyncSettings",
    "OperationRequest",
]
