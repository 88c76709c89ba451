"""Logging setup shared by the API process and tests."""

from __future__ import annotations

import logging
import re
import sys
from datetime import datetime, timezone


_SECRET_RE = re.compile(r"((?:token|apikey|api_key|apiKey)=)[^&\s]+", re.IGNORECASE)


class TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        base = f"{timestamp} {record.levelname:8} {record.name}: {record.getMessage()}"
        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)
        return base


class SecretRedactionFilter(logging.Filter):
    """Masks credentials embedded in provider query strings."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _SECRET_RE.sub(r"\1[REDACTED]", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(TextFormatter())
    handler.addFilter(SecretRedactionFilter())
    root_logger.addHandler(handler)
