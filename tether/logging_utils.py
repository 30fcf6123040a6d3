"""Logging helpers for the Tether runtime."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
import sys
from typing import Union

LOG_SUBPATH = Path("logs") / "tether.log"
STRUCTURED_LOG_SUBPATH = Path("logs") / "tether.jsonl"
MAX_BYTES = 5 * 1024 * 1024  # 5 MB per log segment
BACKUP_COUNT = 3
REPO_ROOT = Path(__file__).resolve().parent.parent
FALLBACK_ROOT = REPO_ROOT / ".tether_runtime"
ROOT_LOGGER = "tether"


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        # Callers attach context with extra={"extra": {...}}
        if hasattr(record, "extra") and record.extra:
            log_entry["extra"] = record.extra
        return json.dumps(log_entry, default=str)


def setup_logging(
    data_dir: Path,
    level: Union[str, int] = logging.INFO,
    structured: bool = True,
    console: bool = True,
) -> Path:
    """Configure Tether logging with optional structured JSON output.

    Args:
        data_dir: Path to the data directory for log storage.
        level: Logging level (string name or int constant).
        structured: Whether to enable structured JSON logging.
        console: Whether to echo records to stderr.

    Returns:
        Path to the primary (text) log file.
    """
    log_path = _resolve_path(data_dir, LOG_SUBPATH, "logs")

    resolved_level = _resolve_level(level)
    text_formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(text_formatter)

    logger = logging.getLogger(ROOT_LOGGER)
    _reset_handlers(logger)
    logger.setLevel(resolved_level)
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(text_formatter)
        logger.addHandler(console_handler)

    if structured:
        json_path = _resolve_path(data_dir, STRUCTURED_LOG_SUBPATH, "structured logs")
        json_handler = RotatingFileHandler(
            json_path,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        json_handler.setFormatter(JSONFormatter())
        logger.addHandler(json_handler)

    logger.propagate = False

    _quiet_server_logs()
    return log_path


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return int(level)


def _resolve_path(data_dir: Path, subpath: Path, label: str) -> Path:
    primary = data_dir / subpath
    try:
        primary.parent.mkdir(parents=True, exist_ok=True)
        return primary
    except PermissionError:
        fallback = FALLBACK_ROOT / subpath
        fallback.parent.mkdir(parents=True, exist_ok=True)
        print(
            f"[config] Unable to write {label} under '{data_dir}'; "
            f"falling back to '{fallback.parent}'.",
            file=sys.stderr,
        )
        return fallback


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _quiet_server_logs() -> None:
    # uvicorn logs every request at INFO.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


__all__ = [
    "setup_logging",
    "JSONFormatter",
    "LOG_SUBPATH",
    "STRUCTURED_LOG_SUBPATH",
    "FALLBACK_ROOT",
]
