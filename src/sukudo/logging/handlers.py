"""JSON log formatting."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line.

    Keys: timestamp (ISO-8601 UTC), level, message, logger (unless root),
    context (extra attributes and job context) and exception.
    """

    _STANDARD_ATTRS: frozenset[str] = frozenset(
        {
            "name",
            "msg",
            "args",
            "levelname",
            "levelno",
            "pathname",
            "filename",
            "module",
            "lineno",
            "funcName",
            "created",
            "msecs",
            "relativeCreated",
            "thread",
            "threadName",
            "processName",
            "process",
            "message",
            "exc_info",
            "exc_text",
            "stack_info",
            "taskName",
            # Added by JobContextFilter
            "job_id",
            "input_index",
            "job_tag",
        }
    )

    def format(self, record: logging.LogRecord) -> str:
        record_time = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_entry: dict[str, Any] = {
            "timestamp": record_time.isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
        }

        if record.name and record.name != "root":
            log_entry["logger"] = record.name

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self._STANDARD_ATTRS and not key.startswith("_")
        }

        job_id = getattr(record, "job_id", None)
        if job_id:
            context["job_id"] = job_id
        input_index = getattr(record, "input_index", None)
        if input_index is not None:
            context["input_index"] = input_index

        if context:
            log_entry["context"] = context

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)
