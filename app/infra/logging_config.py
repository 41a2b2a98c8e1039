"""Logging setup shared by the API process and Celery workers."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from app.config import get_settings

DEFAULT_LOGGER_NAME = "mensajero"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, including fields passed via ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        log_record: dict[str, Any] = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_record[key] = value
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


class LoggingConfig:
    """Configure the root logger once per process.

    JSON lines in production, a readable single-line format elsewhere.
    """

    _configured = False

    def __init__(self, level: str | None = None, json_logs: bool | None = None) -> None:
        settings = get_settings()
        self.level = (level or settings.log_level or "INFO").upper()
        self.json_logs = settings.is_production if json_logs is None else json_logs
        if not LoggingConfig._configured:
            self.configure()

    def configure(self) -> None:
        handler = logging.StreamHandler(sys.stdout)
        if self.json_logs:
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(
                logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")
            )
        root = logging.getLogger()
        root.handlers = [handler]
        root.setLevel(self.level)
        # httpx logs every request at INFO, including Graph API URLs
        logging.getLogger("httpx").setLevel(logging.WARNING)
        LoggingConfig._configured = True


def get_logger(name: str | None = None) -> logging.Logger:
    if not name:
        return logging.getLogger(DEFAULT_LOGGER_NAME)
    return logging.getLogger(f"{DEFAULT_LOGGER_NAME}.{name}")
