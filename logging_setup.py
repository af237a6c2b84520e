"""JSON logging for the quiz service.

Provides:
- `set_attempt_id` to tag log lines with the attempt being worked on
- `JSONFormatter` to render records as single-line JSON
- `configure_logging` to install the formatter on stdout
"""

import json
import logging
import sys
import time
from contextvars import ContextVar
from typing import Optional, Union

_attempt_id: ContextVar[Optional[str]] = ContextVar("attempt_id", default=None)


def set_attempt_id(attempt_id: Optional[str]) -> None:
    """Set/clear the attempt id attached to log records in this context."""
    _attempt_id.set(attempt_id)


class JSONFormatter(logging.Formatter):
    """Format log records as compact JSON."""

    def format(self, record: logging.LogRecord) -> str:
        base = {
            "level": record.levelname,
            "ts": round(time.time(), 3),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        attempt_id = _attempt_id.get()
        if attempt_id:
            base["attempt_id"] = attempt_id
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False)


def configure_logging(level: Union[int, str] = "INFO") -> logging.Logger:
    """Send root logging to stdout through JSONFormatter and return the service logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)
    return logging.getLogger("training")
