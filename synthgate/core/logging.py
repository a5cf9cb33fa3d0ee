"""Centralized logging configuration."""

import json
import logging
import sys
from datetime import datetime, timezone

from synthgate.core.config import Settings, settings as default_settings
from synthgate.core.security import redact_secrets


class RedactingFilter(logging.Filter):
    """Strip credential material from every record before it is formatted."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact_secrets(record.getMessage())
        record.args = None
        return True


class RedactingFormatter(logging.Formatter):
    """Plain-text formatter that also redacts tracebacks and stack info."""

    def format(self, record: logging.LogRecord) -> str:
        return redact_secrets(super().format(record))


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_data["exception"] = redact_secrets(self.formatException(record.exc_info))
        if hasattr(record, "task_id"):
            log_data["task_id"] = record.task_id
        if hasattr(record, "credential_id"):
            log_data["credential_id"] = record.credential_id
        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(config: Settings | None = None) -> None:
    """Configure logging for the entire application."""
    config = config or default_settings
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(RedactingFilter())

    if config.log_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            RedactingFormatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root.addHandler(handler)

    # Suppress noisy libraries; httpx logs full request URLs including ?key=
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING if not config.app_debug else level)
