"""Conflict storage and optimistic-version conflict detection."""

from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional

from ..errors import NotFound
from ..store import DocumentStore, WriteBatch
from .models import (
    CONFLICTS_COLLECTION,
    RESOLUTIONS_COLLECTION,
    ConflictResolution,
    DetectionResult,
    SyncConflict,
    utc_now,
)

logger = logging.getLogger("tether.sync.conflict")


def document_version(document: Mapping[str, Any]) -> int:
    """Live version of a stored document; documents without one read as 0."""
    return int(document.get("version") or 0)


class ConflictStore:
    """Open conflicts plus the append-only resolution audit trail."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def add(self, conflict: SyncConflict) -> SyncConflict:
        self.store.set(CONFLICTS_COLLECTION, conflict.id, conflict.to_dict())
        return conflict

    def get(self, user_id: str, conflict_id: str) -> SyncConflict:
        data = self.store.get(CONFLICTS_COLLECTION, conflict_id)
        if data is None or data.get("user_id") != user_id:
            raise NotFound(f"Conflict '{conflict_id}' not found")
        return SyncConflict.from_dict(conflict_id, data)

    def list(self, user_id: str, limit: Optional[int] = None) -> List[SyncConflict]:
        rows = self.store.query(
            CONFLICTS_COLLECTION,
            {"user_id": user_id},
            order_by="detected_at",
            limit=limit,
        )
        return [SyncConflict.from_dict(doc_id, data) for doc_id, data in rows]

    def count(self, user_id: str) -> int:
        return self.store.count(CONFLICTS_COLLECTION, {"user_id": user_id})

    def stage_resolution(self, batch: WriteBatch, resolution: ConflictResolution) -> None:
        """Consume the conflict and append the audit entry inside ``batch``.

        The conflict is touched with ``update`` before it is deleted, so the
        commit fails with NotFound when another call consumed it first.
        """
        batch.update(CONFLICTS_COLLECTION, resolution.conflict_id, {"resolution_id": resolution.id})
        batch.delete(CONFLICTS_COLLECTION, resolution.conflict_id)
        batch.set(RESOLUTIONS_COLLECTION, resolution.id, resolution.to_dict())

    def history(self, user_id: str, limit: Optional[int] = None) -> List[ConflictResolution]:
        rows = self.store.query(
            RESOLUTIONS_COLLECTION,
            {"user_id": user_id},
            order_by="resolved_at",
            descending=True,
            limit=limit,
        )
        return [ConflictResolution.from_dict(doc_id, data) for doc_id, data in rows]

    def stats(self, user_id: str) -> Dict[str, Any]:
        resolutions = self.history(user_id)
        by_strategy = Counter(res.strategy.value for res in resolutions)
        return {
            "open": self.count(user_id),
            "resolved": len(resolutions),
            "by_strategy": dict(by_strategy),
        }


class ConflictDetector:
    """Compares a client's declared version with the live document version."""

    def __init__(self, store: DocumentStore, conflicts: ConflictStore):
        self.store = store
        self.conflicts = conflicts

    def detect(
        self,
        user_id: str,
        collection: str,
        document_id: str,
        client_version: int,
        client_data: Optional[Mapping[str, Any]] = None,
        operation_id: Optional[str] = None,
    ) -> DetectionResult:
        """Check one document and persist a conflict record on mismatch."""
        server_data = self.store.get(collection, document_id)
        if server_data is None:
            return DetectionResult(
                has_conflict=False,
                reason="Document does not exist on server",
            )

        return self.compare(
            user_id,
            collection,
            document_id,
            client_version,
            client_data or {},
            server_data,
            operation_id=operation_id,
        )

    def compare(
        self,
        user_id: str,
        collection: str,
        document_id: str,
        client_version: int,
        client_data: Mapping[str, Any],
        server_data: Mapping[str, Any],
        *,
        operation_id: Optional[str] = None,
    ) -> DetectionResult:
        """Compare against an already-read server snapshot."""
        server_version = document_version(server_data)
        if server_version == client_version:
            return DetectionResult(has_conflict=False)

        conflict = SyncConflict(
            id=self.store.create_id(),
            user_id=user_id,
            operation_id=operation_id or f"conflict-{int(time.time() * 1000)}",
            collection=collection,
            document_id=document_id,
            client_version=int(client_version),
            server_version=server_version,
            client_data=dict(client_data),
            server_data=dict(server_data),
            detected_at=utc_now(),
        )
        self.conflicts.add(conflict)
        logger.info(
            "Conflict detected on %s/%s (client v%d, server v%d)",
            collection,
            document_id,
            conflict.client_version,
            server_version,
            extra={"extra": {"conflict_id": conflict.id, "operation_id": conflict.operation_id}},
        )
        return DetectionResult(
            has_conflict=True,
            conflict=conflict,
            reason="Version mismatch detected",
        )


__all__ = [
    "ConflictDetector",
    "ConflictStore",
    "CONFLICTS_COLLECTION",
    "RESOLUTIONS_COLLECTION",
    "document_version",
]
