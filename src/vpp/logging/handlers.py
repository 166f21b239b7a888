"""JSON log formatter for log shippers."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {
    "message",
    "asctime",
    "taskName",
}

# Set by JobContextFilter; job_tag is only a prefix for the text format
_JOB_FIELDS = ("job_id", "stage")
_IGNORED = _RECORD_ATTRS | {"job_tag", *_JOB_FIELDS}


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line.

    Keys: ``timestamp`` (ISO-8601 UTC), ``level``, ``message``, ``logger``
    (omitted for root), ``context`` (job id, stage and ``extra`` values,
    omitted when empty) and ``exception``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if record.name != "root":
            entry["logger"] = record.name

        context = self._context(record)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)

    @staticmethod
    def _context(record: logging.LogRecord) -> dict[str, Any]:
        context = {
            key: value
            for key, value in vars(record).items()
            if key not in _IGNORED and not key.startswith("_")
        }
        for name in _JOB_FIELDS:
            value = getattr(record, name, None)
            if value:
                context[name] = value
        return context
