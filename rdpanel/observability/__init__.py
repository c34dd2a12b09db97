"""Logging for the hosting panel."""

from .logger import LogContext, get_logger, log_context, reset_logging, setup_logging

__all__ = ["LogContext", "get_logger", "log_context", "reset_logging", "setup_logging"]
