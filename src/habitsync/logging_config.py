"""Logging setup shared by the reference service, the CLI and the sync client.

Console output stays human readable. Everything at INFO and above is also
written as one JSON object per line to ``<DATA_DIR>/logs/habitsync.log`` so
cache and mutation traces can be grepped after a session.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import BaseConfig

ROOT_LOGGER = "habitsync"
LOG_FILENAME = "habitsync.log"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3

# Chatty libraries the client leans on; their DEBUG output drowns ours.
QUIET_LIBRARIES = ("aiohttp.access", "apscheduler")

_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        extra = {key: value for key, value in vars(record).items() if key not in _RESERVED}
        if extra:
            payload["extra"] = extra
        return json.dumps(payload, default=str)


def _console_handler(dev_mode: bool) -> logging.Handler:
    handler = logging.StreamHandler()
    if dev_mode:
        handler.setLevel(logging.INFO)
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-7s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"
            )
        )
    else:
        handler.setLevel(logging.WARNING)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    return handler


def _file_handler(logs_dir: Path) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        logs_dir / LOG_FILENAME,
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(JSONFormatter())
    return handler


def _reset_handlers(logger: logging.Logger) -> None:
    # create_app may run several times per process (tests, CLI)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_logging(config: BaseConfig) -> logging.Logger:
    """Attach console and JSON file handlers to the ``habitsync`` logger.

    Safe to call repeatedly; previous handlers are closed first.
    """
    logs_dir = Path(config.DATA_DIR) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(ROOT_LOGGER)
    _reset_handlers(logger)
    logger.setLevel(logging.DEBUG if config.DEV_MODE else logging.INFO)
    logger.addHandler(_console_handler(config.DEV_MODE))
    logger.addHandler(_file_handler(logs_dir))

    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(
        "Logging ready",
        extra={
            "dev_mode": config.DEV_MODE,
            "log_file": str(logs_dir / LOG_FILENAME),
            "sync_profile": getattr(config, "SYNC_PROFILE", None),
        },
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return ``habitsync.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
