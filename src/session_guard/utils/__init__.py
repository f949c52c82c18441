"""Shared utility helpers for session-guard."""

from .logging import LoggingOptions, configure_logging, get_logger, log_file_path
from .sanitize import redact_headers, sanitize_log_message

__all__ = [
    "LoggingOptions",
    "configure_logging",
    "get_logger",
    "log_file_path",
    "redact_headers",
    "sanitize_log_message",
]
