"""
Structured JSON logging for sync passes.

Every per-record transition in a sync pass is logged as one JSON line.
The record context (local_id, server_id, failure kind) is emitted as
top-level keys so collected logs can be filtered per person.

Usage:
    from person_sync.logging_utils import configure_structured_logging

    configure_structured_logging(logging.INFO, static_fields={"device": "tablet-7"})
"""

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, TextIO

# Keys written right after the message, in this order, when present
SYNC_CONTEXT_FIELDS = ("local_id", "server_id", "operation", "kind")

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.NOTSET, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


def _json_safe(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """
    Render log records as single-line JSON objects.

    Fixed keys are timestamp (ISO 8601 UTC, taken from the record's creation
    time), level, logger and message. Sync context fields follow in a stable
    order, then any other ``extra`` values. ``static_fields`` are stamped on
    every line and never override record values.
    """

    def __init__(self, static_fields: Mapping[str, Any] | None = None):
        super().__init__()
        self.static_fields = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        for key in SYNC_CONTEXT_FIELDS:
            if key in extras:
                payload[key] = _json_safe(extras.pop(key))
        for key, value in extras.items():
            payload[key] = _json_safe(value)
        for key, value in self.static_fields.items():
            payload.setdefault(key, value)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = "person_sync",
    stream: TextIO | None = None,
    static_fields: Mapping[str, Any] | None = None,
) -> logging.Logger:
    """
    Send one logger's output to a stream as JSON lines.

    Existing handlers on that logger are replaced, so calling this twice
    does not duplicate lines.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: the package logger, None for root)
        stream: Destination (default: stdout, resolved at call time)
        static_fields: Keys added to every line, e.g. a device or app id

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(StructuredJsonFormatter(static_fields))
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


class RecordLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter carrying one record's context on every line.

    Call-site ``extra`` values win over the bound context.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **fields: Any) -> "RecordLoggerAdapter":
        """Return a new adapter with extra context fields."""
        return RecordLoggerAdapter(self.logger, {**self.extra, **fields})
