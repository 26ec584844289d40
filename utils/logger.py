"""
Non-Blocking Logging Configuration

QueueHandler-based logging setup that moves console writes to a separate
thread so request handlers never block on log I/O. Every record passes
through a RedactingFilter before it is queued, which masks signatures,
tokens and bot credentials that may end up in messages or arguments.

Usage:
    from utils.logger import configure_non_blocking_logging

    # At application startup (before any logging)
    listener = configure_non_blocking_logging()
"""

import atexit
import logging
import logging.handlers
import os
import queue
import re
import sys
from typing import Optional

# Module-level reference to the listener for shutdown handling
_log_listener: Optional[logging.handlers.QueueListener] = None

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%H:%M:%S"

REDACTED = "***"

_SECRET_PATTERNS = (
    # key=value and key: value pairs, quoted or not
    re.compile(
        r"(?P<key>[\"']?\b(?:hash|access_token|refresh_token|client_secret|bot_token|code)[\"']?\s*[=:]\s*[\"']?)"
        r"(?P<value>[^\s\"',&}]+)",
        re.IGNORECASE,
    ),
    re.compile(r"(?P<key>Bearer\s+)(?P<value>[A-Za-z0-9._~+/=-]+)"),
    # Telegram bot tokens: <bot id>:<35 char secret>
    re.compile(r"(?P<key>\b\d{6,}:)(?P<value>[A-Za-z0-9_-]{30,})"),
)


def redact_text(text: str) -> str:
    """Mask secret-looking values in a log message."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: f"{m.group('key')}{REDACTED}", text)
    return text


class RedactingFilter(logging.Filter):
    """Rewrites records so secrets never reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:
            return True
        redacted = redact_text(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def _resolve_log_level(value: str | None) -> int:
    """Resolve log level from string or integer value."""
    if value is None:
        return logging.INFO

    stripped = value.strip().upper()

    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    if stripped in level_map:
        return level_map[stripped]

    try:
        return int(value.strip())
    except ValueError:
        return logging.INFO


def configure_non_blocking_logging(
    level: int | str | None = None,
    log_format: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    queue_size: int = -1,
    silence_noisy_libs: bool = True,
) -> logging.handlers.QueueListener:
    """
    Configure non-blocking logging using QueueHandler pattern.

    Args:
        level: Log level (default: from LOG_LEVEL env var or INFO)
        log_format: Format string for log messages
        date_format: Format string for timestamps
        queue_size: Max queue size (-1 for infinite)
        silence_noisy_libs: If True, set noisy libraries to WARNING level

    Returns:
        QueueListener instance
    """
    global _log_listener

    if level is None or isinstance(level, str):
        level = _resolve_log_level(level if level is not None else os.getenv("LOG_LEVEL"))

    # Reconfiguring replaces the previous listener
    stop_logging()

    log_queue: queue.Queue = queue.Queue(queue_size)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(log_format, datefmt=date_format))

    listener = logging.handlers.QueueListener(
        log_queue,
        console_handler,
        respect_handler_level=True,
    )
    listener.start()

    queue_handler = logging.handlers.QueueHandler(log_queue)
    queue_handler.setLevel(level)
    queue_handler.addFilter(RedactingFilter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(queue_handler)

    if silence_noisy_libs:
        for logger_name in ("httpcore", "httpx", "asyncio", "uvicorn.access"):
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    atexit.register(stop_logging)
    _log_listener = listener

    return listener


def get_log_listener() -> Optional[logging.handlers.QueueListener]:
    """Get the current log listener for manual shutdown if needed."""
    return _log_listener


def stop_logging() -> None:
    """Stop the background logging thread and flush remaining logs."""
    global _log_listener
    if _log_listener is not None:
        try:
            _log_listener.stop()
        except RuntimeError:
            pass
        _log_listener = None


def is_logging_configured() -> bool:
    """Check if non-blocking logging has been configured."""
    return _log_listener is not None


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
