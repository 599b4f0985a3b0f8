"""Logging configuration for the ingestion CLI and embedding services.

Provides JSON-structured log lines for production and a human-readable
format for interactive use. Logs go to stderr so that machine-readable
command output on stdout stays clean.

Security Impact:
    - Application code logs row indexes and truncated identity hashes only;
      the formatter adds no record payloads
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

HUMAN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Chatty third-party loggers kept at WARNING
QUIET_LOGGERS = ("duckdb", "openpyxl")


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for logs."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)
        if hasattr(record, "row_index"):
            log_data["row_index"] = record.row_index

        return json.dumps(log_data, default=str)


def configure_logging(log_level: str = "INFO", use_json: bool = False) -> None:
    """Install a single stderr handler on the root logger.

    Parameters:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: Emit JSON lines via StructuredFormatter
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if use_json:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(HUMAN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
