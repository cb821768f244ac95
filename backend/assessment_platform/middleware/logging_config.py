"""
Structured JSON logging configuration.

Every log line is one JSON object: timestamp, level, logger, message and the
current request_id. Access-log lines also carry duration_ms and status_code.
Set JSON_LOGS=false for plain text during local development.
"""

import json
import logging
from datetime import datetime, timezone

from assessment_platform.middleware.request_context import get_request_id

_EXTRA_FIELDS = ("duration_ms", "status_code", "tenant_id", "user_id")


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": get_request_id(),
        }

        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_logging(log_level: str = "INFO", json_logs: bool = True):
    """Replace the root logger's handlers with one stream handler."""
    handler = logging.StreamHandler()
    if json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
