"""Logging setup shared by the service, the client and the mirror store."""

import json
import logging
import sys
from datetime import datetime, timezone

LINE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Request lines from these carry item ids; keep them out of INFO
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy")


class JsonFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", format_type: str = "standard") -> None:
    """Route all records to stdout, as pipe-separated lines or as JSON (``format_type="json"``)."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    if format_type == "json":
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=LINE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers[:] = [handler]

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
