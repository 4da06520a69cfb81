"""
Structured logging configuration.

Outputs logs in JSON format for easy parsing by log aggregators, or a
plain text format for development. Index lifecycle records carry the
collection and index id so builds and drops can be traced per collection.
"""

import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict

# Record attributes lifted into the JSON payload when present
CONTEXT_FIELDS = ("collection", "index_id", "operation", "duration_ms")


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs one JSON object per record.

    Each log entry includes:
    - timestamp (ISO 8601)
    - level, logger name and message
    - collection / index_id / operation when the record carries them
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        return json.dumps(log_data, default=str)


def configure_structured_logging(
    level: str = "INFO",
    enable_json: bool = False,
) -> None:
    """
    Configure root logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_json: If True, use JSON format. If False, use standard format.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper()))

    if enable_json:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Admin server access logs
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
