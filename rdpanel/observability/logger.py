"""Structured logger for the hosting panel.

Provides context-aware logging with optional JSON formatting.

Usage:
    from rdpanel.observability import get_logger, log_context

    logger = get_logger(__name__)

    with log_context(account="main", action="stop"):
        logger.info("Power action sent", extra={"server_id": "srv-1"})
        # Output: {"timestamp": "...", "account": "main", "action": "stop", "message": "...", "server_id": "srv-1"}
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = "rdpanel"

# Attributes every LogRecord has; anything else came in through `extra`.
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


@dataclass
class LogContext:
    """Context for structured logging.

    Attributes are automatically included in all log messages
    within this context.
    """

    account: str | None = None
    server_id: str | None = None
    action: str | None = None
    mode: str | None = None
    correlation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}


_CONTEXT_FIELDS = frozenset(f.name for f in fields(LogContext))

_log_context: contextvars.ContextVar[LogContext] = contextvars.ContextVar(
    "log_context",
    default=LogContext(),
)


class _ContextManager:
    """Context manager for setting log context."""

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.token: contextvars.Token[LogContext] | None = None

    def __enter__(self) -> LogContext:
        current = _log_context.get()
        merged = current.to_dict()
        merged.update(
            {k: v for k, v in self.kwargs.items() if k in _CONTEXT_FIELDS and v is not None}
        )
        self.token = _log_context.set(LogContext(**merged))
        return _log_context.get()

    def __exit__(self, *args: Any) -> None:
        if self.token is not None:
            _log_context.reset(self.token)


def log_context(**kwargs: Any) -> _ContextManager:
    """Create a context manager for setting log context.

    Args:
        **kwargs: Context fields to set (account, server_id, action, ...)

    Example:
        with log_context(account="main", mode="scheduled_silent"):
            logger.info("Refreshing servers")
    """
    return _ContextManager(**kwargs)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class StructuredFormatter(logging.Formatter):
    """JSON formatter with context support."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_log_context.get().to_dict())
        entry.update(_extra_fields(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class PrettyFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        ctx = _log_context.get()
        color = self.COLORS.get(record.levelname, "")

        prefix_parts = []
        if ctx.account:
            prefix_parts.append(f"[{ctx.account}]")
        if ctx.action:
            prefix_parts.append(f"[{ctx.action}]")
        if ctx.server_id:
            prefix_parts.append(f"[{ctx.server_id}]")

        prefix = " ".join(prefix_parts)
        if prefix:
            prefix += " "

        timestamp = datetime.now().strftime("%H:%M:%S")
        level = record.levelname[:4]
        message = record.getMessage()

        extras = [f"{key}={value}" for key, value in _extra_fields(record).items()]
        extra_str = " | " + ", ".join(extras) if extras else ""

        formatted = f"{timestamp} {color}{level}{self.RESET} {prefix}{message}{extra_str}"

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


_logging_configured = False


def setup_logging(
    level: int = logging.INFO,
    json_format: bool = False,
    quiet: bool = False,
    handler: logging.Handler | None = None,
) -> None:
    """Set up logging for the panel.

    Args:
        level: Logging level (default: INFO)
        json_format: Use JSON format (default: False, use pretty format)
        quiet: Suppress all output except errors (default: False)
        handler: Use this handler instead of a stderr stream handler
    """
    global _logging_configured

    if _logging_configured:
        return

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.handlers.clear()

    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(StructuredFormatter() if json_format else PrettyFormatter())
    handler.setLevel(logging.ERROR if quiet else level)

    root.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.WARNING)

    _logging_configured = True


def reset_logging() -> None:
    """Allow setup_logging() to run again (used by entry points that reconfigure)."""
    global _logging_configured
    _logging_configured = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module.

    Args:
        name: Module name (usually __name__)

    Returns:
        Configured logger instance
    """
    setup_logging()

    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"

    return logging.getLogger(name)
