"""Tests for logging utilities."""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from tether import logging_utils


@pytest.fixture(autouse=True)
def tether_logger():
    logger = _reset_logger()
    yield logger
    _reset_logger()


def _reset_logger() -> logging.Logger:
    logger = logging.getLogger("tether")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    return logger


def test_setup_logging_creates_rotating_files(tmp_path: Path, tether_logger):
    log_path = logging_utils.setup_logging(tmp_path, level="INFO")

    assert log_path == tmp_path / "logs" / "tether.log"
    assert log_path.exists()
    assert (tmp_path / "logs" / "tether.jsonl").exists()

    file_handlers = [
        handler for handler in tether_logger.handlers if isinstance(handler, RotatingFileHandler)
    ]
    assert len(file_handlers) == 2
    assert file_handlers[0].baseFilename == str(log_path)
    assert tether_logger.level == logging.INFO


def test_setup_logging_without_structured_or_console(tmp_path: Path, tether_logger):
    logging_utils.setup_logging(tmp_path, level="DEBUG", structured=False, console=False)

    assert len(tether_logger.handlers) == 1
    assert not (tmp_path / "logs" / "tether.jsonl").exists()


def test_setup_logging_is_idempotent(tmp_path: Path, tether_logger):
    logging_utils.setup_logging(tmp_path, level="INFO")
    handler_count = len(tether_logger.handlers)

    logging_utils.setup_logging(tmp_path, level="INFO")

    assert len(tether_logger.handlers) == handler_count


def test_structured_log_includes_extra_fields(tmp_path: Path):
    logging_utils.setup_logging(tmp_path, level="INFO", console=False)
    logger = logging.getLogger("tether.sync.processor")

    logger.info("Processed %d", 3, extra={"extra": {"user_id": "u1", "processed": 3}})
    for handler in logging.getLogger("tether").handlers:
        handler.flush()

    lines = (tmp_path / "logs" / "tether.jsonl").read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[-1])
    assert entry["message"] == "Processed 3"
    assert entry["logger"] == "tether.sync.processor"
    assert entry["level"] == "INFO"
    assert entry["extra"] == {"user_id": "u1", "processed": 3}


def test_json_formatter_includes_exception():
    formatter = logging_utils.JSONFormatter()
    try:
        raise ValueError("bad")
    except ValueError:
        record = logging.LogRecord("tether", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

    entry = json.loads(formatter.format(record))

    assert entry["message"] == "failed"
    assert "ValueError: bad" in entry["exception"]


def test_setup_logging_falls_back_when_permission_denied(tmp_path: Path, monkeypatch):
    data_dir = tmp_path / "data"
    primary_parent = data_dir / "logs"
    original_mkdir = Path.mkdir

    def fake_mkdir(self, *args, **kwargs):
        if str(self).startswith(str(primary_parent)):
            raise PermissionError
        return original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fake_mkdir)
    fallback_root = tmp_path / "fallback"
    monkeypatch.setattr(logging_utils, "FALLBACK_ROOT", fallback_root)

    log_path = logging_utils.setup_logging(data_dir, level="INFO", console=False)
    expected = fallback_root / "logs" / "tether.log"

    assert log_path == expected
    assert expected.exists()
