"""Structured logging configuration with payment correlation fields.

Flows bind the payment id, tool name and session id of the call they
are handling to context variables; the filter below stamps them onto
every log record so one payment attempt can be traced across the
initiate, poll and confirm calls that touch it.
"""
from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterator, Optional

if TYPE_CHECKING:
    from sardis_paygate.config import PaygateSettings

payment_id_var: ContextVar[Optional[str]] = ContextVar("payment_id", default=None)
tool_name_var: ContextVar[Optional[str]] = ContextVar("tool_name", default=None)
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)

_CONTEXT_FIELDS = ("payment_id", "tool_name", "session_id")

_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "taskName", *_CONTEXT_FIELDS,
})


class PaygateContextFilter(logging.Filter):
    """Logging filter that adds payment context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.payment_id = payment_id_var.get()
        record.tool_name = tool_name_var.get()
        record.session_id = session_id_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure logging for a process hosting the payment gate.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging (True) or simple format (False)
        log_file: Optional file path for logging output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(payment_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(PaygateContextFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(PaygateContextFilter())
        root_logger.addHandler(file_handler)


@contextmanager
def payment_log_context(
    tool_name: Optional[str] = None,
    session_id: Optional[str] = None,
    payment_id: Optional[str] = None,
) -> Iterator[None]:
    """Bind payment correlation fields for the duration of a block."""
    tokens = [
        (tool_name_var, tool_name_var.set(tool_name)),
        (session_id_var, session_id_var.set(session_id)),
        (payment_id_var, payment_id_var.set(payment_id)),
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def bind_payment_id(payment_id: str) -> None:
    """Attach a freshly created payment id to the current context."""
    payment_id_var.set(payment_id)


def configure_from_settings(settings: "PaygateSettings") -> None:
    """Apply ``log_level``/``log_json`` from gate settings."""
    setup_logging(level=settings.log_level, json_format=settings.log_json)
