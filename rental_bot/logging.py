from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any

from rental_bot.config import get_log_path, load_config

# Correlation ID for tracing one inbound message across service calls
_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Get the current correlation ID, or an empty string outside a message."""
    return _correlation_id.get()


@contextmanager
def correlation_context(cid: str | None = None) -> Generator[str, None, None]:
    """Context manager for setting a correlation ID for a block of code."""
    token = _correlation_id.set(cid or uuid.uuid4().hex[:12])
    try:
        yield _correlation_id.get()
    finally:
        _correlation_id.reset(token)


class CorrelationFilter(logging.Filter):
    """Logging filter that adds correlation_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter for machine parsing."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra_data"):
            log_entry["data"] = record.extra_data
        return json.dumps(log_entry)


def configure_logging(config: dict[str, Any] | None = None) -> None:
    cfg = config or load_config()
    log_cfg = cfg.get("logging", {}) if isinstance(cfg.get("logging"), dict) else {}
    level_name = str(log_cfg.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    use_json = bool(log_cfg.get("json_format", False))

    log_path = get_log_path(cfg)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)

    if root.handlers:
        # Avoid duplicate handlers when the app is imported repeatedly in tests.
        return

    correlation_filter = CorrelationFilter()

    if use_json:
        fmt: logging.Formatter = StructuredFormatter()
    else:
        fmt = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(correlation_id)s | %(name)s | %(message)s"
        )

    stream = logging.StreamHandler()
    stream.setFormatter(fmt)
    stream.addFilter(correlation_filter)
    root.addHandler(stream)

    file_handler = RotatingFileHandler(
        log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(fmt)
    file_handler.addFilter(correlation_filter)
    root.addHandler(file_handler)

    # httpx logs every request at INFO, which drowns out message handling.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **extra: Any,
) -> None:
    """Log a message with additional structured context data."""
    record = logger.makeRecord(
        logger.name,
        level,
        "(unknown)",
        0,
        message,
        (),
        None,
    )
    record.extra_data = extra
    record.correlation_id = get_correlation_id() or "-"
    logger.handle(record)
