"""Conflict resolution strategies."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from ..errors import InvalidArgument, NotFound
from ..store import DocumentStore, WriteBatch
from .conflict import ConflictStore
from .models import ConflictResolution, ConflictStrategy, SyncConflict, parse_enum, utc_now
from .queue import SyncQueueStore

logger = logging.getLogger("tether.sync.resolver")

StrategyHandler = Callable[[SyncConflict, Optional[Mapping[str, Any]]], Dict[str, Any]]


class ConflictResolver:
    """Turns an open conflict into a final document and an audit entry."""

    def __init__(self, store: DocumentStore, conflicts: ConflictStore, queue: SyncQueueStore):
        self.store = store
        self.conflicts = conflicts
        self.queue = queue
        self._strategies: Dict[ConflictStrategy, StrategyHandler] = {
            ConflictStrategy.CLIENT_WINS: self._resolve_client_wins,
            ConflictStrategy.SERVER_WINS: self._resolve_server_wins,
            ConflictStrategy.MERGE: self._resolve_merge,
            ConflictStrategy.MANUAL: self._resolve_manual,
        }

    def final_data(
        self,
        conflict: SyncConflict,
        strategy: ConflictStrategy,
        resolved_data: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Compute the document body a strategy produces, without writing it."""
        return self._strategies[strategy](conflict, resolved_data)

    def resolve(
        self,
        user_id: str,
        conflict_id: str,
        strategy: Any,
        resolved_data: Optional[Mapping[str, Any]] = None,
    ) -> ConflictResolution:
        """Resolve a conflict exactly once.

        The document write, the audit entry, the stamp on the originating
        operation and the removal of the conflict are committed in one batch.
        The document is written with ``version = server_version + 1``. A
        second call for the same id, concurrent or later, raises NotFound
        and writes nothing.
        """
        strategy = parse_enum(ConflictStrategy, strategy, "conflict resolution strategy")
        conflict = self.conflicts.get(user_id, conflict_id)
        final = self.final_data(conflict, strategy, resolved_data)
        resolved_at = utc_now()

        resolution = ConflictResolution(
            id=self.store.create_id(),
            conflict_id=conflict.id,
            user_id=user_id,
            operation_id=conflict.operation_id,
            strategy=strategy,
            client_data=conflict.client_data,
            server_data=conflict.server_data,
            resolved_data=final,
            resolved_at=resolved_at,
            resolved_by=user_id,
        )

        batch = self.store.batch()
        self.conflicts.stage_resolution(batch, resolution)
        batch.set(
            conflict.collection,
            conflict.document_id,
            {
                **final,
                "version": conflict.server_version + 1,
                "last_modified": resolved_at,
                "last_modified_by": user_id,
            },
            merge=True,
        )
        self._stage_operation_stamp(batch, user_id, resolution)
        try:
            batch.commit()
        except NotFound:
            raise NotFound(f"Conflict '{conflict_id}' not found") from None

        logger.info(
            "Resolved conflict %s on %s/%s with %s",
            conflict.id,
            conflict.collection,
            conflict.document_id,
            strategy.value,
        )
        return resolution

    def _stage_operation_stamp(
        self,
        batch: WriteBatch,
        user_id: str,
        resolution: ConflictResolution,
    ) -> None:
        # Conflicts from an explicit detect call have no queued operation.
        try:
            record = self.queue.get(user_id, resolution.operation_id)
        except NotFound:
            return
        record.resolution_id = resolution.id
        self.queue.stage(batch, record)

    def _resolve_client_wins(
        self, conflict: SyncConflict, _: Optional[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        """Keep the client's pending change."""
        return dict(conflict.client_data)

    def _resolve_server_wins(
        self, conflict: SyncConflict, _: Optional[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        """Discard the client's pending change."""
        return dict(conflict.server_data)

    def _resolve_merge(
        self, conflict: SyncConflict, _: Optional[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        """Shallow merge: client keys override server keys one by one."""
        return {**conflict.server_data, **conflict.client_data}

    def _resolve_manual(
        self, conflict: SyncConflict, resolved_data: Optional[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        if resolved_data is None:
            raise InvalidArgument("Resolved data required for manual resolution")
        if not isinstance(resolved_data, Mapping):
            raise InvalidArgument("Resolved data must be an object")
        return dict(resolved_data)


__all__ = ["ConflictResolver"]
