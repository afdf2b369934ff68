"""
Structured JSON logging configuration.

Session tokens and cookie values must never reach a log line.  Records
carry a ``token_hint`` instead: a short digest prefix that lets operators
correlate the issue / renew / revoke lines of one session without being
able to replay it.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from datetime import datetime, timezone

from samesite_auth.core.config import settings

# Extra record attributes copied into the JSON line when present
_EXTRA_FIELDS = ("request_id", "user_id", "scheme", "token_hint", "cookies_set")

# Extra attributes that are replaced wholesale if a caller passes them
_REDACT_FIELDS = ("token", "cookie", "cookies", "secret", "value")
REDACTED = "[redacted]"

TOKEN_HINT_LENGTH = 8


def token_hint(token: str | None) -> str | None:
    """Short, non-reversible handle for *token* (a prefix of its verifier)."""
    if not token:
        return None
    return hashlib.sha256(token.encode()).hexdigest()[:TOKEN_HINT_LENGTH]


class JsonFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value:
                log_entry[field] = value

        for field in _REDACT_FIELDS:
            if getattr(record, field, None):
                log_entry[field] = REDACTED

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging() -> None:
    """Configure the root logger with structured JSON output."""
    root = logging.getLogger()
    root.setLevel(settings.LOG_LEVEL.upper())

    # Prevent duplicate handlers on reload
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    # Token lookups run on every request; keep the driver quiet
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return a named logger."""
    return logging.getLogger(name)
