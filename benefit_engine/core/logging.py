"""
Bike Benefit Engine - Structured Logging

JSON output in production, console output in development.
All log entries include timestamp, level, logger name, message and any
context fields bound with LogContext (request_id, company_id, batch_id...).

Usage:
    from benefit_engine.core.logging import LogContext

    with LogContext(batch_id=batch_id, company_id=company_id):
        logger.info("Processing started")
"""

from __future__ import annotations

import json
import logging
import sys
import time
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Generator

from pydantic import BaseModel

# =============================================================================
# Context Variables for Correlation
# =============================================================================

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def get_current_context() -> Dict[str, Any]:
    """Get current logging context."""
    return _log_context.get().copy()


def set_context(**kwargs: Any) -> None:
    """Set context values for current async context."""
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


# =============================================================================
# Sensitive Data Redaction
# =============================================================================

REDACT_PATTERNS = frozenset(
    {
        "password",
        "secret",
        "api_key",
        "apikey",
        "token",
        "authorization",
        "credential",
        "service_key",
    }
)


def redact_sensitive(data: Any, max_depth: int = 10) -> Any:
    """
    Recursively redact sensitive fields from data structures.

    Args:
        data: Data to redact (dict, list, or primitive)
        max_depth: Maximum recursion depth to prevent infinite loops

    Returns:
        Data with sensitive fields redacted
    """
    if max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if any(pattern in key_lower for pattern in REDACT_PATTERNS):
                result[key] = "[REDACTED]"
            else:
                result[key] = redact_sensitive(value, max_depth - 1)
        return result

    if isinstance(data, (list, tuple)):
        return [redact_sensitive(item, max_depth - 1) for item in data]

    if isinstance(data, BaseModel):
        return redact_sensitive(data.model_dump(), max_depth - 1)

    return data


# =============================================================================
# JSON Formatter
# =============================================================================


class StructuredJsonFormatter(logging.Formatter):
    """
    JSON log formatter for production environments.

    Output format:
    {
        "timestamp": "2025-12-07T10:30:00.123456Z",
        "level": "INFO",
        "logger": "benefit_engine.ingest.bulk_invite",
        "message": "Bulk invite complete",
        "request_id": "ab12cd34",
        "company_id": "...",
        ...
    }
    """

    EXTRA_KEYS = (
        "request_id",
        "batch_id",
        "company_id",
        "benefit_id",
        "row_index",
        "duration_ms",
        "status",
        "error_code",
        "count",
    )

    def __init__(self, redact_sensitive_data: bool = True):
        super().__init__()
        self.redact_sensitive_data = redact_sensitive_data

    def format(self, record: logging.LogRecord) -> str:
        log_dict: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        log_dict.update(get_current_context())

        for key in self.EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_dict[key] = value

        if record.exc_info:
            log_dict["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        if self.redact_sensitive_data:
            log_dict = redact_sensitive(log_dict)

        return json.dumps(log_dict, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Plain console output for development."""

    def format(self, record: logging.LogRecord) -> str:
        context = get_current_context()
        context_parts = [
            f"{key}={context[key]}" for key in ("request_id", "company_id", "batch_id") if key in context
        ]
        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        line = f"[{timestamp}] {record.levelname:8} {record.name}:{context_str} {record.getMessage()}"
        if record.exc_info:
            line += "\n" + "".join(traceback.format_exception(*record.exc_info))
        return line


# =============================================================================
# Split-Stream Handler (stdout for INFO/DEBUG, stderr for WARNING+)
# =============================================================================


class _MaxLevelFilter(logging.Filter):
    """Filter that passes records at or below a maximum level."""

    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= self.max_level


def _create_split_handlers(
    formatter: logging.Formatter,
    level: int = logging.DEBUG,
) -> list[logging.Handler]:
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(level)
    stdout_handler.addFilter(_MaxLevelFilter(logging.INFO))
    stdout_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(formatter)

    return [stdout_handler, stderr_handler]


def configure_structured_logging(
    level: str = "INFO",
    json_output: bool = True,
    service_name: str = "benefit-engine",
) -> None:
    """
    Configure structured logging for the application.

    Log routing:
    - DEBUG, INFO → stdout
    - WARNING, ERROR, CRITICAL → stderr
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter: logging.Formatter = StructuredJsonFormatter() if json_output else ConsoleFormatter()
    for handler in _create_split_handlers(formatter, getattr(logging, level.upper())):
        root_logger.addHandler(handler)

    set_context(service=service_name)


# =============================================================================
# Context Manager
# =============================================================================


@contextmanager
def LogContext(**kwargs: Any) -> Generator[None, None, None]:
    """
    Context manager for adding fields to all logs within the block.

    Usage:
        with LogContext(company_id="c-1", batch_id="b-1"):
            logger.info("Processing")  # Includes company_id and batch_id
    """
    previous = _log_context.get().copy()
    try:
        new_context = previous.copy()
        new_context.update(kwargs)
        _log_context.set(new_context)
        yield
    finally:
        _log_context.set(previous)


class Timer:
    """
    Context manager for timing code blocks.

    Usage:
        with Timer() as t:
            do_something()
        logger.info("Operation took", extra={"duration_ms": t.elapsed_ms})
    """

    def __init__(self) -> None:
        self.start_time: float = 0
        self.end_time: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.end_time = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        end = self.end_time or time.perf_counter()
        return (end - self.start_time) * 1000
