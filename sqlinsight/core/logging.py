"""Centralized logging configuration.

``setup_logging`` is called once by the application entry point
(``python -m sqlinsight``); library code only creates module loggers.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TextIO

from sqlinsight.core.config import settings

# Structured fields attached through ``extra=`` that the JSON formatter emits.
_EXTRA_FIELDS = ("request_id", "dimension", "strategy", "shape_kind")


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_data["exception"] = self.formatException(record.exc_info)
        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)
        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str | None = None, json_output: bool | None = None, stream: TextIO | None = None) -> None:
    """Configure logging for the entire application.

    ``level`` and ``json_output`` override the ``log_level`` / ``log_json``
    settings. Records go to ``stream`` (stdout by default).
    """
    level_name = level or settings.log_level
    use_json = settings.log_json if json_output is None else json_output
    resolved = getattr(logging, level_name.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(resolved)

    # Remove existing handlers
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(resolved)

    if use_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root.addHandler(handler)

    # Suppress noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
