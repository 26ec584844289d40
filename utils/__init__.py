"""
Shared utilities module.

Contains:
- logger: Non-blocking, secret-redacting logging configuration
"""

from utils.logger import (
    configure_non_blocking_logging,
    get_log_listener,
    stop_logging,
    is_logging_configured,
    redact_text,
    RedactingFilter,
    DEFAULT_LOG_FORMAT,
    DEFAULT_DATE_FORMAT,
)

__all__ = [
    "configure_non_blocking_logging",
    "get_log_listener",
    "stop_logging",
    "is_logging_configured",
    "redact_text",
    "RedactingFilter",
    "DEFAULT_LOG_FORMAT",
    "DEFAULT_DATE_FORMAT",
]
