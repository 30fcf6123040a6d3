"""Records persisted by the sync engine and the results it returns."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from ..errors import InvalidArgument


class OperationType(str, Enum):
    """Kinds of mutation a client can queue."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    BATCH = "BATCH"


class SyncStatus(str, Enum):
    """Lifecycle of an operation record."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CONFLICT = "CONFLICT"


class ConflictStrategy(str, Enum):
    """Strategies for resolving a version conflict."""
    CLIENT_WINS = "CLIENT_WINS"
    SERVER_WINS = "SERVER_WINS"
    MERGE = "MERGE"
    MANUAL = "MANUAL"


class SubOperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


TERMINAL_STATUSES = frozenset({SyncStatus.COMPLETED, SyncStatus.FAILED, SyncStatus.CONFLICT})

# Engine bookkeeping shares the document store with client data.
SYNC_QUEUE_COLLECTION = "syncQueue"
CONFLICTS_COLLECTION = "syncConflicts"
RESOLUTIONS_COLLECTION = "conflictResolutions"
SYNC_STATES_COLLECTION = "syncStates"
RESERVED_COLLECTIONS = frozenset({
    SYNC_QUEUE_COLLECTION,
    CONFLICTS_COLLECTION,
    RESOLUTIONS_COLLECTION,
    SYNC_STATES_COLLECTION,
})


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def camelize(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Rename top-level keys to camelCase; nested document data is left alone."""
    return {camel_case(key): value for key, value in data.items()}


def parse_enum(enum_cls, value: Any, label: str):
    """Coerce a raw value into ``enum_cls`` or raise InvalidArgument."""
    if isinstance(value, enum_cls):
        return value
    raw = str(value)
    for candidate in (raw, raw.upper(), raw.lower()):
        try:
            return enum_cls(candidate)
        except ValueError:
            continue
    allowed = ", ".join(member.value for member in enum_cls)
    raise InvalidArgument(f"Invalid {label} '{value}'. Expected one of: {allowed}")


def check_client_collection(collection: str) -> str:
    """Reject collection names the engine keeps for itself."""
    if collection in RESERVED_COLLECTIONS:
        raise InvalidArgument(f"Collection '{collection}' is reserved")
    return collection


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


@dataclass
class DocumentPayload:
    """Document fields carried by CREATE, UPDATE and DELETE operations."""

    fields: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.fields)


@dataclass
class SubOperation:
    """One write inside a BATCH operation."""

    type: SubOperationType
    collection: str
    document_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "type": self.type.value,
            "collection": self.collection,
            "data": dict(self.data),
        }
        if self.document_id:
            result["documentId"] = self.document_id
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SubOperation":
        if not isinstance(data, Mapping):
            raise InvalidArgument("Batch sub-operations must be objects")
        sub_type = parse_enum(SubOperationType, data.get("type"), "sub-operation type")
        collection = data.get("collection")
        if not isinstance(collection, str) or not collection:
            raise InvalidArgument("Batch sub-operation requires a collection")
        check_client_collection(collection)
        document_id = data.get("documentId", data.get("document_id"))
        if sub_type is not SubOperationType.CREATE and not document_id:
            raise InvalidArgument(f"Document ID required for {sub_type.value}")
        payload = data.get("data") or {}
        if not isinstance(payload, Mapping):
            raise InvalidArgument("Batch sub-operation data must be an object")
        return cls(
            type=sub_type,
            collection=collection,
            document_id=str(document_id) if document_id else None,
            data=dict(payload),
        )


@dataclass
class BatchPayload:
    """Ordered sub-operations committed together by a BATCH operation."""

    operations: List[SubOperation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"operations": [op.to_dict() for op in self.operations]}


Payload = Union[DocumentPayload, BatchPayload]


def payload_from_dict(operation_type: OperationType, raw: Any) -> Payload:
    """Build the payload variant that matches ``operation_type``."""

    if operation_type is OperationType.BATCH:
        operations = raw.get("operations") if isinstance(raw, Mapping) else None
        if not isinstance(operations, list):
            raise InvalidArgument("Batch operation requires operations array")
        return BatchPayload([SubOperation.from_dict(op) for op in operations])

    if raw is None:
        return DocumentPayload()
    if not isinstance(raw, Mapping):
        raise InvalidArgument("Operation data must be an object")
    return DocumentPayload(dict(raw))


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class OperationRecord:
    """The durable unit of sync work enqueued by a client."""

    id: str
    user_id: str
    operation_type: OperationType
    collection: str
    payload: Payload
    document_id: Optional[str] = None
    timestamp: str = field(default_factory=utc_now)
    sequence: int = 0
    retry_count: int = 0
    status: SyncStatus = SyncStatus.PENDING
    conflict_resolution: ConflictStrategy = ConflictStrategy.CLIENT_WINS
    client_version: Optional[int] = None
    server_version: Optional[int] = None
    device_id: Optional[str] = None
    error: Optional[str] = None
    last_error: Optional[str] = None
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None
    last_retry_at: Optional[str] = None
    conflict_id: Optional[str] = None
    claimed_at: Optional[str] = None
    resolution_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "operation_type": self.operation_type.value,
            "collection": self.collection,
            "document_id": self.document_id,
            "data": self.payload.to_dict(),
            "timestamp": self.timestamp,
            "sequence": self.sequence,
            "retry_count": self.retry_count,
            "status": self.status.value,
            "conflict_resolution": self.conflict_resolution.value,
            "client_version": self.client_version,
            "server_version": self.server_version,
            "device_id": self.device_id,
            "error": self.error,
            "last_error": self.last_error,
            "completed_at": self.completed_at,
            "failed_at": self.failed_at,
            "last_retry_at": self.last_retry_at,
            "conflict_id": self.conflict_id,
            "claimed_at": self.claimed_at,
            "resolution_id": self.resolution_id,
        }

    def to_wire(self) -> Dict[str, Any]:
        return camelize({"id": self.id, **self.to_dict()})

    @classmethod
    def from_dict(cls, record_id: str, data: Mapping[str, Any]) -> "OperationRecord":
        operation_type = OperationType(data["operation_type"])
        return cls(
            id=record_id,
            user_id=data["user_id"],
            operation_type=operation_type,
            collection=data["collection"],
            document_id=data.get("document_id"),
            payload=payload_from_dict(operation_type, data.get("data")),
            timestamp=data.get("timestamp", ""),
            sequence=int(data.get("sequence", 0)),
            retry_count=int(data.get("retry_count", 0)),
            status=SyncStatus(data.get("status", SyncStatus.PENDING.value)),
            conflict_resolution=ConflictStrategy(
                data.get("conflict_resolution") or ConflictStrategy.CLIENT_WINS.value
            ),
            client_version=data.get("client_version"),
            server_version=data.get("server_version"),
            device_id=data.get("device_id"),
            error=data.get("error"),
            last_error=data.get("last_error"),
            completed_at=data.get("completed_at"),
            failed_at=data.get("failed_at"),
            last_retry_at=data.get("last_retry_at"),
            conflict_id=data.get("conflict_id"),
            claimed_at=data.get("claimed_at"),
            resolution_id=data.get("resolution_id"),
        )


@dataclass
class SyncConflict:
    """A client edit whose declared version no longer matches the server."""

    id: str
    user_id: str
    operation_id: str
    collection: str
    document_id: str
    client_version: int
    server_version: int
    client_data: Dict[str, Any] = field(default_factory=dict)
    server_data: Dict[str, Any] = field(default_factory=dict)
    detected_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "operation_id": self.operation_id,
            "collection": self.collection,
            "document_id": self.document_id,
            "client_version": self.client_version,
            "server_version": self.server_version,
            "client_data": dict(self.client_data),
            "server_data": dict(self.server_data),
            "detected_at": self.detected_at,
        }

    def to_wire(self) -> Dict[str, Any]:
        return camelize({"id": self.id, **self.to_dict()})

    @classmethod
    def from_dict(cls, conflict_id: str, data: Mapping[str, Any]) -> "SyncConflict":
        return cls(
            id=conflict_id,
            user_id=data["user_id"],
            operation_id=data["operation_id"],
            collection=data["collection"],
            document_id=data["document_id"],
            client_version=int(data["client_version"]),
            server_version=int(data["server_version"]),
            client_data=dict(data.get("client_data") or {}),
            server_data=dict(data.get("server_data") or {}),
            detected_at=data.get("detected_at", ""),
        )


@dataclass
class ConflictResolution:
    """Audit entry written when a conflict is resolved. Never mutated."""

    id: str
    conflict_id: str
    user_id: str
    operation_id: str
    strategy: ConflictStrategy
    client_data: Dict[str, Any] = field(default_factory=dict)
    server_data: Dict[str, Any] = field(default_factory=dict)
    resolved_data: Dict[str, Any] = field(default_factory=dict)
    resolved_at: str = field(default_factory=utc_now)
    resolved_by: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflict_id": self.conflict_id,
            "user_id": self.user_id,
            "operation_id": self.operation_id,
            "strategy": self.strategy.value,
            "client_data": dict(self.client_data),
            "server_data": dict(self.server_data),
            "resolved_data": dict(self.resolved_data),
            "resolved_at": self.resolved_at,
            "resolved_by": self.resolved_by,
        }

    def to_wire(self) -> Dict[str, Any]:
        return camelize({"id": self.id, **self.to_dict()})

    @classmethod
    def from_dict(cls, resolution_id: str, data: Mapping[str, Any]) -> "ConflictResolution":
        return cls(
            id=resolution_id,
            conflict_id=data.get("conflict_id", ""),
            user_id=data["user_id"],
            operation_id=data.get("operation_id", ""),
            strategy=ConflictStrategy(data["strategy"]),
            client_data=dict(data.get("client_data") or {}),
            server_data=dict(data.get("server_data") or {}),
            resolved_data=dict(data.get("resolved_data") or {}),
            resolved_at=data.get("resolved_at", ""),
            resolved_by=data.get("resolved_by", ""),
        )


@dataclass
class ClientSyncState:
    """Per-user counters derived from the queue after each pass."""

    user_id: str
    last_sync_timestamp: Optional[str] = None
    pending_operations: int = 0
    failed_operations: int = 0
    sync_in_progress: bool = False
    device_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "last_sync_timestamp": self.last_sync_timestamp,
            "pending_operations": self.pending_operations,
            "failed_operations": self.failed_operations,
            "sync_in_progress": self.sync_in_progress,
            "device_id": self.device_id,
        }

    @classmethod
    def from_dict(cls, user_id: str, data: Mapping[str, Any]) -> "ClientSyncState":
        return cls(
            user_id=user_id,
            last_sync_timestamp=data.get("last_sync_timestamp"),
            pending_operations=int(data.get("pending_operations", 0)),
            failed_operations=int(data.get("failed_operations", 0)),
            sync_in_progress=bool(data.get("sync_in_progress", False)),
            device_id=data.get("device_id"),
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class SyncQueueStatus:
    """Snapshot returned by a status query."""

    pending: int = 0
    in_progress: int = 0
    failed: int = 0
    conflicts: int = 0
    last_sync: Optional[str] = None
    next_operation: Optional[OperationRecord] = None

    def to_wire(self) -> Dict[str, Any]:
        return {
            "pending": self.pending,
            "inProgress": self.in_progress,
            "failed": self.failed,
            "conflicts": self.conflicts,
            "lastSync": self.last_sync,
            "nextOperation": self.next_operation.to_wire() if self.next_operation else None,
        }


@dataclass
class ProcessResult:
    """Counts for one processing pass."""

    processed: int = 0
    failed: int = 0
    retried: int = 0
    conflict_details: List[SyncConflict] = field(default_factory=list)
    message: str = ""

    @property
    def conflicts(self) -> int:
        return len(self.conflict_details)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "retried": self.retried,
            "conflicts": self.conflicts,
            "conflictDetails": [c.to_wire() for c in self.conflict_details],
            "message": self.message,
        }


@dataclass
class DetectionResult:
    """Outcome of an explicit conflict check."""

    has_conflict: bool
    conflict: Optional[SyncConflict] = None
    reason: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"hasConflict": self.has_conflict}
        if self.conflict is not None:
            result["conflict"] = self.conflict.to_wire()
        if self.reason:
            result["reason"] = self.reason
        return result


__all__ = [
    "OperationType",
    "SyncStatus",
    "ConflictStrategy",
    "SubOperationType",
    "TERMINAL_STATUSES",
    "SYNC_QUEUE_COLLECTION",
    "CONFLICTS_COLLECTION",
    "RESOLUTIONS_COLLECTION",
    "SYNC_STATES_COLLECTION",
    "RESERVED_COLLECTIONS",
    "DocumentPayload",
    "SubOperation",
    "BatchPayload",
    "Payload",
    "payload_from_dict",
    "OperationRecord",
    "SyncConflict",
    "ConflictResolution",
    "ClientSyncState",
    "SyncQueueStatus",
    "ProcessResult",
    "DetectionResult",
    "camelize",
    "check_client_collection",
    "parse_enum",
    "utc_now",
]
