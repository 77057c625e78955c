"""
Structured JSON Logging Configuration for the e-KYC session backend.

Every record is emitted as one JSON object with timestamp, level, logger
and message, plus:
- transaction_id: the X-Request-ID of the HTTP request being served
  (set by RequestIDMiddleware, injected by RequestContextFilter)
- session_id, latency_ms, ...: passed via ``extra={...}``
"""
import contextvars
import functools
import json
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Request id of the request currently being handled (None outside requests)
transaction_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "transaction_id", default=None
)

EXTRA_FIELDS = ("transaction_id", "session_id", "latency_ms", "status_code", "method", "path")


class RequestContextFilter(logging.Filter):
    """Copies the current request id onto each record that lacks one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "transaction_id"):
            transaction_id = transaction_id_var.get()
            if transaction_id is not None:
                record.transaction_id = transaction_id
        return True


class JSONFormatter(logging.Formatter):
    """Custom formatter that outputs JSON-structured logs."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """
    Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, use JSON formatting; else plain text with the
            session id appended when present
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(RequestContextFilter())

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))

    root_logger.addHandler(handler)

    # Third-party chatter
    for name in ("uvicorn.access", "httpx", "httpcore", "multipart", "insightface"):
        logging.getLogger(name).setLevel(logging.WARNING)


def log_execution_time(func):
    """
    Decorator to log how long a (synchronous) function took.

    Logs at DEBUG level, so per-frame analysis does not flood INFO.

    Usage:
        @log_execution_time
        def analyze(self, image):
            ...
    """
    logger = logging.getLogger(func.__module__)

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            logger.debug(
                f"{func.__qualname__} completed in {elapsed_ms:.2f}ms",
                extra={"latency_ms": round(elapsed_ms, 2)}
            )

    return wrapper
