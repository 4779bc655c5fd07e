"""
Structured logging.

Every record is rendered as one JSON object so pipeline events can be grepped
and shipped without parsing free text.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

turn_id_ctx: ContextVar[str] = ContextVar("turn_id", default="")

EVENT_LOGGER_NAME = "aurora.events"

_configured = False


class StructuredLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        turn_id = turn_id_ctx.get()
        if turn_id:
            log_obj["turn_id"] = turn_id

        fields = getattr(record, "event_fields", None)
        if isinstance(fields, dict):
            log_obj.update(fields)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True):
    """Install a single stdout handler on the root logger (idempotent)."""
    global _configured
    root = logging.getLogger()
    root.setLevel(level)
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(StructuredLogFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.addHandler(handler)
    _configured = True


def log_event(event: str, level: int = logging.INFO, **fields: Any):
    logging.getLogger(EVENT_LOGGER_NAME).log(level, event, extra={"event_fields": {"event": event, **fields}})
