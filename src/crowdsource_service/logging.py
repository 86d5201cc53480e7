"""
Structured JSON logging for the crowdsource service.

Every record is one JSON object per line. Context passed through
``extra=`` is collected under the ``extra`` key.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import UTC, datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

ROOT_LOGGER_NAME = "crowdsource_service"

VALID_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Attributes every LogRecord carries; anything else came in through extra=.
_RESERVED: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render log records as JSON lines stamped with the service name."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self._service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "service": self._service_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {key: value for key, value in vars(record).items() if key not in _RESERVED}
        if extra:
            entry["extra"] = extra
        return json.dumps(entry, default=str)


class DailyRotatingFileHandler(TimedRotatingFileHandler):
    """
    Write to ``<directory>/<YYYY-MM-DD>.log`` and roll over at UTC midnight.

    Each day's file keeps its date as its name; a rollover opens the next
    day's file instead of renaming the current one.
    """

    def __init__(self, directory: str | Path) -> None:
        self._log_directory = Path(directory)
        self._log_directory.mkdir(parents=True, exist_ok=True)
        super().__init__(self._todays_filename(), when="midnight", utc=True, encoding="utf-8")

    def _todays_filename(self) -> str:
        today = datetime.now(tz=UTC).strftime("%Y-%m-%d")
        return str(self._log_directory / f"{today}.log")

    def doRollover(self) -> None:  # noqa: N802
        if self.stream:
            self.stream.close()
            self.stream = None  # type: ignore[assignment]
        self.baseFilename = os.path.abspath(self._todays_filename())
        if not self.delay:
            self.stream = self._open()
        self.rolloverAt = self.computeRollover(int(time.time()))


def setup_logging(level: str, service_name: str, log_directory: str) -> logging.Logger:
    """
    Configure the service logger tree.

    Records go to stdout and to a dated file under ``log_directory``.
    Handlers from a previous call are closed first.

    Raises:
        ValueError: If level is not a valid log level
    """
    level_name = level.upper()
    if level_name not in VALID_LOG_LEVELS:
        msg = f"Invalid log level: {level}. Must be one of {sorted(VALID_LOG_LEVELS)}"
        raise ValueError(msg)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = JSONFormatter(service_name)
    handlers: list[logging.Handler] = [
        logging.StreamHandler(sys.stdout),
        DailyRotatingFileHandler(log_directory),
    ]
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.setLevel(level_name)
    root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """Get a logger inside the service logger tree."""
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
