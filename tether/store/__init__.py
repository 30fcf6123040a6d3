"""Document store adapters for the sync engine."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from .base import DocumentStore, PendingWrite, WriteBatch
from .memory import MemoryDocumentStore
from .sqlite import SQLiteDocumentStore

STORE_BACKENDS = ("memory", "sqlite")


def open_store(config: Dict[str, Any], data_dir: Path) -> DocumentStore:
    """Build the document store named by the ``store`` config section."""

    raw = config.get("store", {}) if config else {}
    backend = str(raw.get("backend", "sqlite")).lower()

    if backend == "memory":
        return MemoryDocumentStore()
    if backend == "sqlite":
        path = Path(str(raw.get("path", "state/tether.db")))
        if not path.is_absolute():
            path = data_dir / path
        return SQLiteDocumentStore(path).initialize()
    raise ValueError(
        f"Unknown store backend '{backend}'. Expected one of: {', '.join(STORE_BACKENDS)}."
    )


__all__ = [
    # Base
    "DocumentStore",
    "PendingWrite",
    "WriteBatch",
    # Adapters
    "MemoryDocumentStore",
    "SQLiteDocumentStore",
    "STORE_BACKENDS",
    "open_store",
]
