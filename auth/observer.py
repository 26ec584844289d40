"""
Observability hooks for signed-payload verification.

Verification never logs inline. The verifier reports its outcome to an
observer, and observers only ever receive a redacted summary of the payload.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

logger = logging.getLogger(__name__)

REDACTED = "***"

# Fields that identify the login attempt without carrying a secret
VISIBLE_FIELDS = frozenset({"id", "username", "auth_date"})

REASON_MISSING_FIELDS = "missing_fields"
REASON_MALFORMED = "malformed_payload"
REASON_SIGNATURE_MISMATCH = "signature_mismatch"
REASON_ERROR = "error"


def redact_payload(payload: Any) -> dict[str, Any]:
    """Build a log-safe copy of a payload: visible fields kept, the rest masked."""
    if not isinstance(payload, Mapping):
        return {"type": type(payload).__name__}
    summary: dict[str, Any] = {}
    for key, value in payload.items():
        name = str(key)
        if name in VISIBLE_FIELDS and isinstance(value, (str, int, float)):
            summary[name] = value
        else:
            summary[name] = REDACTED
    return summary


class VerificationObserver(Protocol):
    def on_verified(self, summary: Mapping[str, Any]) -> None: ...

    def on_rejected(self, reason: str, summary: Mapping[str, Any]) -> None: ...


class NullVerificationObserver:
    """Observer that discards every event."""

    def on_verified(self, summary: Mapping[str, Any]) -> None:
        return None

    def on_rejected(self, reason: str, summary: Mapping[str, Any]) -> None:
        return None


class LoggingVerificationObserver:
    """Reports verification outcomes to a logger."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def on_verified(self, summary: Mapping[str, Any]) -> None:
        self._log.info(
            "Signed payload verified: id=%s username=%s",
            summary.get("id"),
            summary.get("username"),
        )

    def on_rejected(self, reason: str, summary: Mapping[str, Any]) -> None:
        self._log.warning(
            "Signed payload rejected (%s): fields=%s id=%s",
            reason,
            sorted(summary),
            summary.get("id"),
        )


__all__ = [
    "REDACTED",
    "REASON_MISSING_FIELDS",
    "REASON_MALFORMED",
    "REASON_SIGNATURE_MISMATCH",
    "REASON_ERROR",
    "redact_payload",
    "VerificationObserver",
    "NullVerificationObserver",
    "LoggingVerificationObserver",
]
