"""Tests for the command-line entry point."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from tether import app


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    target = tmp_path / "data"
    monkeypatch.setenv("TETHER_DATA_DIR", str(target))
    monkeypatch.delenv("TETHER_LOG_LEVEL", raising=False)
    yield target
    logger = logging.getLogger("tether")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


def test_one_shot_command_prints_output(data_dir: Path, capsys):
    exit_code = app.main(["/help"])

    assert exit_code == 0
    assert "/queue" in capsys.readouterr().out
    assert (data_dir / "logs" / "tether.log").exists()


def test_queue_command_opens_sqlite_store_under_data_dir(data_dir: Path, capsys):
    exit_code = app.main(["queue", "process", "u1"])

    assert exit_code == 0
    assert "No pending operations" in capsys.readouterr().out
    assert (data_dir / "state" / "tether.db").exists()


def test_invalid_configuration_is_reported(data_dir: Path, capsys):
    config_dir = data_dir / "config"
    config_dir.mkdir(parents=True)
    (config_dir / "local.yml").write_text("sync:\n  batch_size: lots\n", encoding="utf-8")

    app.main(["queue", "status", "u1"])

    captured = capsys.readouterr()
    assert "(ERROR)" in captured.err
    assert "requires a ready configuration" in captured.out


def test_execute_cli_command_strips_slash(data_dir: Path, capsys):
    bundle = app.prepare_runtime(data_dir)
    router = app.build_router(bundle)

    result = app.execute_cli_command("/help queue", router)

    assert "[queue] Usage" in result
    assert app.execute_cli_command("   ", router) == ""
