"""Shared fixtures for the Tether test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from tether.configuration import ConfigurationBundle
from tether.store import MemoryDocumentStore
from tether.sync import SyncEngine, SyncSettings


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def engine(store: MemoryDocumentStore) -> SyncEngine:
    return SyncEngine(store, SyncSettings())


@pytest.fixture
def bundle(tmp_path: Path) -> ConfigurationBundle:
    return ConfigurationBundle(
        data_dir=tmp_path,
        status="ready",
        merged={"store": {"backend": "memory"}, "api": {"host": "127.0.0.1", "port": 8000}},
    )
