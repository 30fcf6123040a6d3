"""Sync engine facade: the operations exposed to callers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Union

from ..errors import InvalidArgument, NotFound, QueueFull
from ..store import DocumentStore, open_store
from .conflict import ConflictDetector, ConflictStore
from .dispatch import OperationApplier
from .models import (
    ClientSyncState,
    ConflictResolution,
    ConflictStrategy,
    DetectionResult,
    OperationRecord,
    OperationType,
    ProcessResult,
    SyncConflict,
    SyncQueueStatus,
    SyncStatus,
    check_client_collection,
    parse_enum,
    payload_from_dict,
    utc_now,
)
from .processor import QueueProcessor
from .queue import SyncQueueStore, next_sequence
from .resolver import ConflictResolver
from .state import ClientSyncStateTracker

if TYPE_CHECKING:
    from ..configuration import ConfigurationBundle

logger = logging.getLogger("tether.sync.engine")

DOCUMENT_ID_REQUIRED = frozenset({OperationType.UPDATE, OperationType.DELETE})


@dataclass
class SyncSettings:
    """Limits that govern the queue."""

    queue_capacity: int = 1000
    batch_size: int = 50
    max_retries: int = 3
    max_batch_enqueue: int = 50
    max_collection_length: int = 100
    max_device_id_length: int = 200
    claim_timeout: int = 300

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SyncSettings":
        raw = config.get("sync", {}) if config else {}
        defaults = cls()
        return cls(
            queue_capacity=int(raw.get("queue_capacity", defaults.queue_capacity)),
            batch_size=int(raw.get("batch_size", defaults.batch_size)),
            max_retries=int(raw.get("max_retries", defaults.max_retries)),
            max_batch_enqueue=int(raw.get("max_batch_enqueue", defaults.max_batch_enqueue)),
            max_collection_length=int(
                raw.get("max_collection_length", defaults.max_collection_length)
            ),
            max_device_id_length=int(
                raw.get("max_device_id_length", defaults.max_device_id_length)
            ),
            claim_timeout=int(raw.get("claim_timeout", defaults.claim_timeout)),
        )


@dataclass
class OperationRequest:
    """A proposed operation as submitted by a client."""

    operation_type: Any
    collection: Any
    data: Any = None
    document_id: Optional[Any] = None
    conflict_resolution: Optional[Any] = None
    client_version: Optional[Any] = None
    server_version: Optional[Any] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OperationRequest":
        """Parse the camelCase wire shape."""
        if not isinstance(data, Mapping):
            raise InvalidArgument("Each operation must be an object")
        return cls(
            operation_type=data.get("operationType"),
            collection=data.get("collection"),
            data=data.get("data", data.get("operationData")),
            document_id=data.get("documentId"),
            conflict_resolution=data.get("conflictResolution"),
            client_version=data.get("clientVersion"),
            server_version=data.get("serverVersion"),
        )


RequestLike = Union[OperationRequest, Mapping[str, Any]]


class SyncEngine:
    """Enqueue, process, inspect and reconcile a user's sync queue.

    Every method takes the authenticated ``user_id`` first and only ever
    touches records owned by that user.
    """

    def __init__(self, store: DocumentStore, settings: Optional[SyncSettings] = None):
        self.store = store
        self.settings = settings or SyncSettings()

        self.queue = SyncQueueStore(store)
        self.conflicts = ConflictStore(store)
        self.detector = ConflictDetector(store, self.conflicts)
        self.resolver = ConflictResolver(store, self.conflicts, self.queue)
        self.state = ClientSyncStateTracker(store, self.queue)
        self.applier = OperationApplier(store, self.detector)
        self.processor = QueueProcessor(
            self.queue,
            self.applier,
            self.state,
            batch_size=self.settings.batch_size,
            max_retries=self.settings.max_retries,
            claim_timeout=self.settings.claim_timeout,
        )

    @classmethod
    def from_bundle(cls, bundle: "ConfigurationBundle") -> "SyncEngine":
        """Open the configured store and apply the ``sync`` limits."""
        merged = bundle.merged or {}
        return cls(open_store(merged, bundle.data_dir), SyncSettings.from_config(merged))

    def close(self) -> None:
        self.store.close()

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def enqueue(
        self,
        user_id: str,
        request: RequestLike,
        *,
        device_id: Optional[str] = None,
    ) -> str:
        """Validate and persist one PENDING operation; returns its id."""
        record = self._build_record(user_id, _as_request(request), device_id)
        self._check_capacity(user_id, incoming=1)
        self.queue.add(record)
        logger.info(
            "Enqueued %s on %s for user %s",
            record.operation_type.value,
            record.collection,
            user_id,
            extra={"extra": {"operation_id": record.id, "user_id": user_id}},
        )
        return record.id

    def batch_enqueue(
        self,
        user_id: str,
        requests: Sequence[RequestLike],
        device_id: str,
    ) -> List[str]:
        """Persist up to ``max_batch_enqueue`` operations atomically."""
        if not isinstance(requests, Sequence) or isinstance(requests, (str, bytes)) or not requests:
            raise InvalidArgument("Operations must be a non-empty array")
        if len(requests) > self.settings.max_batch_enqueue:
            raise InvalidArgument(
                f"Batch size cannot exceed {self.settings.max_batch_enqueue}"
            )
        device_id = self._validate_device_id(device_id)

        records = [
            self._build_record(user_id, _as_request(request), device_id)
            for request in requests
        ]
        self._check_capacity(user_id, incoming=len(records))
        operation_ids = self.queue.add_many(records)
        self.state.refresh(user_id, device_id=device_id)

        logger.info(
            "Batch of %d operation(s) enqueued for user %s from device %s",
            len(records),
            user_id,
            device_id,
        )
        return operation_ids

    def _check_capacity(self, user_id: str, incoming: int) -> None:
        pending = self.queue.count(user_id, SyncStatus.PENDING)
        if pending + incoming > self.settings.queue_capacity:
            logger.warning(
                "Sync queue full for user %s (%d pending, capacity %d)",
                user_id,
                pending,
                self.settings.queue_capacity,
            )
            raise QueueFull("Sync queue is full", pending=pending, capacity=self.settings.queue_capacity)

    def _build_record(
        self,
        user_id: str,
        request: OperationRequest,
        device_id: Optional[str],
    ) -> OperationRecord:
        _require_user(user_id)
        operation_type = parse_enum(OperationType, request.operation_type, "operation type")
        strategy = (
            parse_enum(ConflictStrategy, request.conflict_resolution, "conflict resolution strategy")
            if request.conflict_resolution is not None
            else ConflictStrategy.CLIENT_WINS
        )
        collection = self._validate_collection(request.collection)

        document_id = request.document_id
        if document_id is not None and (not isinstance(document_id, (str, int)) or document_id == ""):
            raise InvalidArgument("documentId must be a non-empty string")
        if operation_type in DOCUMENT_ID_REQUIRED and document_id is None:
            raise InvalidArgument(
                f"Document ID required for {operation_type.value.lower()} operation"
            )

        return OperationRecord(
            id=self.queue.new_id(),
            user_id=user_id,
            operation_type=operation_type,
            collection=collection,
            document_id=str(document_id) if document_id is not None else None,
            payload=payload_from_dict(operation_type, request.data),
            timestamp=utc_now(),
            sequence=next_sequence(),
            status=SyncStatus.PENDING,
            conflict_resolution=strategy,
            client_version=_optional_version(request.client_version, "clientVersion"),
            server_version=_optional_version(request.server_version, "serverVersion"),
            device_id=device_id,
        )

    def _validate_collection(self, collection: Any) -> str:
        if not isinstance(collection, str) or not collection.strip():
            raise InvalidArgument("collection is required")
        if len(collection) > self.settings.max_collection_length:
            raise InvalidArgument(
                f"collection must be at most {self.settings.max_collection_length} characters"
            )
        return check_client_collection(collection)

    def _validate_device_id(self, device_id: Any) -> str:
        if not isinstance(device_id, str) or not device_id.strip():
            raise InvalidArgument("deviceId is required")
        if len(device_id) > self.settings.max_device_id_length:
            raise InvalidArgument(
                f"deviceId must be at most {self.settings.max_device_id_length} characters"
            )
        return device_id

    # ------------------------------------------------------------------
    # Processing and status
    # ------------------------------------------------------------------

    def process(self, user_id: str) -> ProcessResult:
        """Run one processing pass over the user's queue."""
        _require_user(user_id)
        return self.processor.process(user_id)

    def status(self, user_id: str) -> SyncQueueStatus:
        _require_user(user_id)
        state = self.state.get(user_id)
        return SyncQueueStatus(
            pending=self.queue.count(user_id, SyncStatus.PENDING),
            in_progress=self.queue.count(user_id, SyncStatus.IN_PROGRESS),
            failed=self.queue.count(user_id, SyncStatus.FAILED),
            conflicts=self.conflicts.count(user_id),
            last_sync=state.last_sync_timestamp,
            next_operation=self.queue.next_pending(user_id),
        )

    def sync_state(self, user_id: str) -> ClientSyncState:
        _require_user(user_id)
        return self.state.get(user_id)

    def get_operation(self, user_id: str, operation_id: str) -> OperationRecord:
        _require_user(user_id)
        return self.queue.get(user_id, operation_id)

    def list_operations(
        self,
        user_id: str,
        status: Optional[Any] = None,
        limit: Optional[int] = None,
    ) -> List[OperationRecord]:
        _require_user(user_id)
        parsed = parse_enum(SyncStatus, status, "status") if status is not None else None
        return self.queue.list(user_id, parsed, limit)

    def clear_queue(self, user_id: str) -> int:
        """Drop the user's PENDING operations; returns how many were removed."""
        _require_user(user_id)
        removed = self.queue.clear_pending(user_id)
        if removed:
            self.state.refresh(user_id)
        return removed

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def detect_conflict(
        self,
        user_id: str,
        collection: str,
        document_id: str,
        client_version: int,
        client_data: Optional[Mapping[str, Any]] = None,
        operation_id: Optional[str] = None,
    ) -> DetectionResult:
        _require_user(user_id)
        collection = self._validate_collection(collection)
        if not isinstance(document_id, str) or not document_id:
            raise InvalidArgument("documentId is required")
        version = _optional_version(client_version, "clientVersion")
        if version is None:
            raise InvalidArgument("clientVersion is required")
        if client_data is not None and not isinstance(client_data, Mapping):
            raise InvalidArgument("clientData must be an object")
        return self.detector.detect(
            user_id,
            collection,
            document_id,
            version,
            client_data,
            operation_id=operation_id,
        )

    def resolve_conflict(
        self,
        user_id: str,
        conflict_id: str,
        strategy: Optional[Any] = None,
        resolved_data: Optional[Mapping[str, Any]] = None,
    ) -> ConflictResolution:
        """Resolve a stored conflict.

        When ``strategy`` is omitted, the strategy declared on the operation
        that raised the conflict is used (CLIENT_WINS if that operation is
        gone, e.g. for conflicts from an explicit detect call).
        """
        _require_user(user_id)
        if not conflict_id:
            raise InvalidArgument("conflictId is required")
        if strategy is None:
            strategy = self._declared_strategy(user_id, conflict_id)
        return self.resolver.resolve(user_id, conflict_id, strategy, resolved_data)

    def _declared_strategy(self, user_id: str, conflict_id: str) -> ConflictStrategy:
        conflict = self.conflicts.get(user_id, conflict_id)
        try:
            return self.queue.get(user_id, conflict.operation_id).conflict_resolution
        except NotFound:
            return ConflictStrategy.CLIENT_WINS

    def list_conflicts(self, user_id: str, limit: Optional[int] = None) -> List[SyncConflict]:
        _require_user(user_id)
        return self.conflicts.list(user_id, limit)

    def conflict_history(
        self,
        user_id: str,
        limit: Optional[int] = None,
    ) -> List[ConflictResolution]:
        _require_user(user_id)
        return self.conflicts.history(user_id, limit)

    def conflict_stats(self, user_id: str) -> Dict[str, Any]:
        _require_user(user_id)
        return self.conflicts.stats(user_id)


def _as_request(request: RequestLike) -> OperationRequest:
    if isinstance(request, OperationRequest):
        return request
    return OperationRequest.from_dict(request)


def _require_user(user_id: str) -> None:
    if not isinstance(user_id, str) or not user_id:
        raise InvalidArgument("An authenticated user id is required")


def _optional_version(value: Any, label: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidArgument(f"{label} must be a non-negative integer")
    return value


__all__ = ["SyncEngine", "SyncSettings", "OperationRequest"]
