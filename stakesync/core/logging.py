"""Structured JSON logging for StakeSync.

Every StakeSync logger writes one JSON object per line. Operation context
(``operation_id``, ``kind``, ``attempt``, ``reason``) is placed right after
the standard fields; anything else passed via ``extra={}`` follows.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

# Attributes every LogRecord carries; anything else on a record came from extra={}
_RECORD_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
}

CONTEXT_FIELDS: tuple[str, ...] = ("operation_id", "kind", "attempt", "reason")

SYNC_LOGGER_NAME = "stakesync.sync"


class JSONFormatter(logging.Formatter):
    """Render records as single-line JSON with a UTC ISO8601 timestamp."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (name, getattr(record, name)) for name in CONTEXT_FIELDS if hasattr(record, name)
        )
        entry.update(
            (name, value)
            for name, value in vars(record).items()
            if name not in _RECORD_ATTRS and name not in entry
        )

        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        try:
            return json.dumps(entry, default=str)
        except (TypeError, ValueError):
            # Circular structures in extra={}
            return str(entry)


def get_logger(name: str = "stakesync", level: int = logging.INFO) -> logging.Logger:
    """Return the named logger writing JSON to stderr at the given level.

    The handler is attached once; later calls only adjust the level. The
    logger does not propagate, so records are not duplicated by root handlers.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(h.formatter, JSONFormatter) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def configure_sync_logger(level: int = logging.INFO) -> logging.Logger:
    """Configure the orchestrator's logger."""
    return get_logger(SYNC_LOGGER_NAME, level)
