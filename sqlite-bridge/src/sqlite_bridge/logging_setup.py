"""Diagnostic logging.

stdout carries result data, so every log line goes to stderr. Structured
metadata is attached with ``extra={"meta": {...}}`` and rendered as JSON after
the message.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import sys
from typing import Optional, TextIO

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_HANDLER_NAME = "sqlite_bridge.stderr"


class BridgeFormatter(logging.Formatter):
    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        ts = dt.datetime.fromtimestamp(record.created, tz=dt.timezone.utc)
        return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def format(self, record: logging.LogRecord) -> str:
        level = "WARN" if record.levelno == logging.WARNING else record.levelname
        parts = [f"[{self.formatTime(record)}]", f"[{level}]", record.getMessage()]
        meta = getattr(record, "meta", None)
        if isinstance(meta, dict) and meta:
            parts.append(json.dumps(meta, default=str, ensure_ascii=False))
        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def parse_level(name: str | None) -> int:
    return _LEVELS.get(str(name or "info").strip().lower(), logging.INFO)


def configure_logging(level: str | None = "info", *, stream: TextIO | None = None) -> None:
    """Install the stderr handler on the package logger (idempotent)."""

    logger = logging.getLogger("sqlite_bridge")
    logger.setLevel(parse_level(level))
    logger.propagate = False

    for handler in list(logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(BridgeFormatter())
    logger.addHandler(handler)
