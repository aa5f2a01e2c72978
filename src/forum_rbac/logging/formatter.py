"""JSON log formatter for permission engine records."""

import json
import logging
from datetime import UTC, datetime

# Passed by callers through ``extra=``; omitted from the entry when absent.
_CONTEXT_FIELDS = ("user_id", "permission", "code")


class JSONLogFormatter(logging.Formatter):
    """Render each record as one JSON object per line.

    A denial logged by the FastAPI dependency looks like::

        {"timestamp": "2026-05-01T12:00:00+00:00", "level": "WARNING", "service": "rbac",
         "logger": "forum_rbac.api.dependencies", "message": "Permission denied ...",
         "user_id": 7, "permission": "topic.pin", "code": "NO_PERMISSION"}
    """

    def __init__(self, service: str = "rbac") -> None:
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "service": self._service,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (name, value) for name in _CONTEXT_FIELDS if (value := getattr(record, name, None)) is not None
        )

        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)
