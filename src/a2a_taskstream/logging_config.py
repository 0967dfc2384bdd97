"""
Structured JSON logging for the A2A-TaskStream server.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRIBUTES = set(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Format log records as structured JSON."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RECORD_ATTRIBUTES or key in payload:
                continue
            try:
                json.dumps(value)
                payload[key] = value
            except (TypeError, ValueError):
                payload[key] = repr(value)

        return json.dumps(payload, separators=(",", ":"))


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Configure application logging in a consistent way.

    Arguments fall back to LOG_LEVEL and LOG_FILE from the environment.
    """
    level_name = level or os.getenv("LOG_LEVEL", "INFO")
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.getLevelName(level_name.upper()))

    # Remove existing handlers to avoid duplicate logs during reloads/tests.
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(JsonFormatter())
    root_logger.addHandler(console_handler)

    log_file = log_file or os.getenv("LOG_FILE")
    if log_file:
        try:
            directory = os.path.dirname(log_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(JsonFormatter())
            root_logger.addHandler(file_handler)
        except OSError as e:
            root_logger.warning(f"Could not set up file logging to {log_file}: {e}")

    # Set specific log levels for noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
