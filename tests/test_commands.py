"""Tests for the queue, conflicts, api and help slash commands."""

from __future__ import annotations

import pytest

from tether.api import APIKeyManager
from tether.commands import COMMANDS
from tether.slash_commands import CommandRouter


@pytest.fixture
def router(bundle, engine) -> CommandRouter:
    router = CommandRouter(bundle, engine=engine)
    for command in COMMANDS:
        router.register(command)
    return router


def _create(doc_id: str = "n1") -> dict:
    return {"operationType": "CREATE", "collection": "notes", "documentId": doc_id, "data": {"title": "a"}}


def test_help_lists_every_command(router):
    output = router.handle("help", [])

    for name in ("/queue", "/conflicts", "/api", "/help"):
        assert name in output


def test_help_for_one_command_shows_its_usage(router):
    assert "[queue] Usage" in router.handle("help", ["/queue"])
    assert "No command named" in router.handle("help", ["bogus"])


def test_queue_requires_user(router):
    assert "needs a user id" in router.handle("queue", ["status"])


def test_queue_status_and_list(router, engine):
    engine.enqueue("u1", _create())

    status = router.handle("queue", ["status", "u1"])
    assert "Pending" in status
    assert "Conflicts" in status

    listing = router.handle("queue", ["list", "u1"])
    assert "CREATE" in listing
    assert "PENDING" in listing

    assert "No operations" in router.handle("queue", ["list", "u2"])


def test_queue_process_reports_summary(router, engine, store):
    engine.enqueue("u1", _create())

    output = router.handle("queue", ["process", "u1"])

    assert output.startswith("[queue] 1 processed")
    assert store.exists("notes", "n1")


def test_queue_process_lists_conflicts(router, engine, store):
    store.set("notes", "n1", {"title": "server", "version": 4})
    engine.enqueue(
        "u1",
        {"operationType": "UPDATE", "collection": "notes", "documentId": "n1", "data": {}, "clientVersion": 2},
    )

    output = router.handle("queue", ["process", "u1"])

    assert "1 conflicts" in output
    assert "client v2, server v4" in output


def test_queue_clear(router, engine):
    engine.enqueue("u1", _create())

    assert router.handle("queue", ["clear", "u1"]) == "[queue] Removed 1 pending operation(s) for 'u1'."


def test_queue_reports_engine_errors(router):
    assert "Invalid status" in router.handle("queue", ["list", "u1", "DONE"])


def test_conflicts_resolve_and_history(router, engine, store):
    store.set("notes", "n1", {"title": "server", "version": 2})
    conflict = engine.detect_conflict("u1", "notes", "n1", 1, {"title": "client"}).conflict

    assert "Open Conflicts" in router.handle("conflicts", ["list", "u1"])

    output = router.handle("conflicts", ["resolve", "u1", conflict.id, "SERVER_WINS"])
    assert output.startswith(f"[conflicts] Resolved {conflict.id} with SERVER_WINS")
    assert store.get("notes", "n1")["version"] == 3

    assert "No open conflicts" in router.handle("conflicts", ["list", "u1"])
    history = router.handle("conflicts", ["history", "u1"])
    assert "SERVER_WINS" in history
    assert "resolved:" in history

    missing = router.handle("conflicts", ["resolve", "u1", conflict.id, "SERVER_WINS"])
    assert missing == f"[conflicts] Conflict '{conflict.id}' not found"


def test_conflicts_manual_resolution_parses_json(router, engine, store):
    store.set("notes", "n1", {"title": "server", "version": 2})
    conflict = engine.detect_conflict("u1", "notes", "n1", 1).conflict

    output = router.handle("conflicts", ["resolve", "u1", conflict.id, "MANUAL", '{"title":', '"mine"}'])

    assert "MANUAL" in output
    assert store.get("notes", "n1")["title"] == "mine"
    assert "not valid JSON" in router.handle(
        "conflicts", ["resolve", "u1", "whatever", "MANUAL", "{oops"]
    )


def test_api_key_issues_resolvable_key(router, bundle):
    output = router.handle("api", ["key", "u1"])

    key = output.splitlines()[0].rsplit(" ", 1)[-1]
    assert APIKeyManager(bundle.data_dir).resolve_user(key) == "u1"

    assert "Revoked" in router.handle("api", ["key", "u1", "revoke"])
    assert "Usage" in router.handle("api", ["key"])


def test_api_help_lists_sync_endpoints(router):
    output = router.handle("api", ["help"])

    assert "/api/v1/sync/operations" in output
    assert "X-API-Key" in output


def test_queue_and_conflicts_require_ready_configuration(bundle, engine):
    bundle.status = "missing"
    router = CommandRouter(bundle, engine=engine)
    for command in COMMANDS:
        router.register(command)

    assert "requires a ready configuration" in router.handle("queue", ["status", "u1"])
    assert "requires a ready configuration" in router.handle("conflicts", ["list", "u1"])
