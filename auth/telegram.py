"""
Telegram login: signed-payload verification and the credentials provider.

The Telegram login widget hands the browser a set of profile fields plus a
`hash`. The hash is an HMAC-SHA256 over the sorted `key=value` lines of the
other fields, keyed with SHA-256(bot token). Only a party holding the bot
token can produce it.

Contains:
- build_check_string / sign_telegram_payload: canonicalization + reference signer
- TelegramSignatureVerifier: fail-closed verification of a widget payload
- TelegramLoginSettings: bot token and freshness window from environment
- TelegramCredentialsProvider: turns verified widget data into an AuthUser
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import math
import os
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Mapping

from auth.models import AuthUser
from auth.observer import (
    REASON_ERROR,
    REASON_MALFORMED,
    REASON_MISSING_FIELDS,
    REASON_SIGNATURE_MISMATCH,
    LoggingVerificationObserver,
    VerificationObserver,
    redact_payload,
)

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

PROVIDER_ID = "telegram"
SIGNATURE_FIELD = "hash"
REQUIRED_FIELDS = ("id", "username", SIGNATURE_FIELD)

# Browsers serialize absent widget fields as the string "undefined"
UNDEFINED_VALUE = "undefined"

# Fields the login widget sends; anything else is ignored by the provider
WIDGET_FIELDS = (
    "auth_date",
    "id",
    "first_name",
    "last_name",
    "username",
    "photo_url",
    SIGNATURE_FIELD,
)

# Tolerated clock drift between Telegram and this server
AUTH_DATE_CLOCK_SKEW_SECONDS = 60


# =============================================================================
# CANONICALIZATION
# =============================================================================

def _render_value(value: Any) -> str:
    if isinstance(value, bool):
        raise TypeError("boolean values cannot be signed")
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise TypeError("non-finite numbers cannot be signed")
        # 1700000000.0 must render as 1700000000 to match the signer
        return str(int(value)) if value.is_integer() else repr(value)
    raise TypeError(f"unsupported value type: {type(value).__name__}")


def build_check_string(payload: Mapping[str, Any]) -> str:
    """
    Build the check-string signed by Telegram.

    The signature field is excluded, fields that are None or "undefined" are
    dropped, the rest are rendered as `key=value` in key order and joined
    with newlines.

    Raises:
        TypeError: If a key is not a string or a value is not a str/int/float
    """
    lines: dict[str, str] = {}
    for key, value in payload.items():
        if not isinstance(key, str):
            raise TypeError(f"field names must be strings, got {type(key).__name__}")
        if key == SIGNATURE_FIELD:
            continue
        if value is None or value == UNDEFINED_VALUE:
            continue
        lines[key] = _render_value(value)
    return "\n".join(f"{key}={lines[key]}" for key in sorted(lines))


def derive_signing_key(secret: bytes | str) -> bytes:
    """Return SHA-256(secret), the HMAC key used for login payloads."""
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    if not isinstance(secret, (bytes, bytearray)):
        raise TypeError("secret must be bytes or str")
    if not secret:
        raise ValueError("secret must not be empty")
    return hashlib.sha256(bytes(secret)).digest()


def _compute_signature(key: bytes, payload: Mapping[str, Any]) -> str:
    check_string = build_check_string(payload)
    return hmac.new(key, check_string.encode("utf-8"), hashlib.sha256).hexdigest()


def sign_telegram_payload(payload: Mapping[str, Any], secret: bytes | str) -> str:
    """Compute the lowercase hex signature Telegram would attach to `payload`."""
    return _compute_signature(derive_signing_key(secret), payload)


# =============================================================================
# VERIFIER
# =============================================================================

class TelegramSignatureVerifier:
    """
    Verifies Telegram login payloads against a bot token.

    The secret is injected at construction and the derived key is kept
    private to the instance. `verify` never raises: any problem with the
    payload is a rejection.
    """

    def __init__(
        self,
        secret: bytes | str,
        observer: VerificationObserver | None = None,
    ) -> None:
        self._key = derive_signing_key(secret)
        self._observer = observer or LoggingVerificationObserver()

    def verify(self, payload: Any) -> bool:
        try:
            return self._verify(payload)
        except Exception:
            self._observer.on_rejected(REASON_ERROR, redact_payload(payload))
            return False

    def _verify(self, payload: Any) -> bool:
        summary = redact_payload(payload)
        if not isinstance(payload, Mapping):
            self._observer.on_rejected(REASON_MALFORMED, summary)
            return False

        if any(not payload.get(field) for field in REQUIRED_FIELDS):
            self._observer.on_rejected(REASON_MISSING_FIELDS, summary)
            return False

        signature = payload[SIGNATURE_FIELD]
        if not isinstance(signature, str):
            self._observer.on_rejected(REASON_MALFORMED, summary)
            return False

        try:
            expected = _compute_signature(self._key, payload)
        except TypeError:
            self._observer.on_rejected(REASON_MALFORMED, summary)
            return False

        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
            self._observer.on_rejected(REASON_SIGNATURE_MISMATCH, summary)
            return False

        self._observer.on_verified(summary)
        return True


def verify_telegram_payload(payload: Any, secret: bytes | str) -> bool:
    """One-shot verification; an unusable secret also counts as a rejection."""
    try:
        verifier = TelegramSignatureVerifier(secret)
    except (TypeError, ValueError):
        logger.error("Telegram verification secret is unusable")
        return False
    return verifier.verify(payload)


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass(frozen=True)
class TelegramLoginSettings:
    """Telegram login configuration loaded from environment variables."""

    bot_token: str
    max_age_seconds: int = 0

    def __repr__(self) -> str:
        return f"TelegramLoginSettings(bot_token='***', max_age_seconds={self.max_age_seconds})"


@lru_cache(maxsize=1)
def get_telegram_login_settings() -> TelegramLoginSettings:
    """Load Telegram login settings from environment variables."""
    bot_token = os.getenv("TELEGRAM_BOT_TOKEN")
    if not bot_token:
        raise RuntimeError("Missing Telegram login env vars: TELEGRAM_BOT_TOKEN")

    raw_max_age = os.getenv("TELEGRAM_AUTH_MAX_AGE_SECONDS", "0")
    try:
        max_age = int(raw_max_age)
    except ValueError as exc:
        raise RuntimeError("TELEGRAM_AUTH_MAX_AGE_SECONDS must be an integer") from exc

    return TelegramLoginSettings(bot_token=bot_token, max_age_seconds=max(max_age, 0))


# =============================================================================
# CREDENTIALS PROVIDER
# =============================================================================

def _widget_text(value: Any) -> str:
    if value is None or value == UNDEFINED_VALUE:
        return ""
    return str(value)


class TelegramCredentialsProvider:
    """Authorizes sign-ins coming from the Telegram login widget."""

    id = PROVIDER_ID
    name = "Telegram"
    type = "credentials"

    def __init__(
        self,
        settings: TelegramLoginSettings | None = None,
        *,
        observer: VerificationObserver | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or get_telegram_login_settings()
        self._verifier = TelegramSignatureVerifier(self._settings.bot_token, observer)
        self._clock = clock

    @property
    def settings(self) -> TelegramLoginSettings:
        return self._settings

    def _is_fresh(self, auth_date: Any) -> bool:
        try:
            issued_at = int(auth_date)
        except (TypeError, ValueError):
            return False
        now = self._clock()
        if issued_at > now + AUTH_DATE_CLOCK_SKEW_SECONDS:
            return False
        return now - issued_at <= self._settings.max_age_seconds

    def authorize(self, credentials: Mapping[str, Any] | None) -> AuthUser | None:
        """
        Verify widget credentials and build the signed-in user.

        Returns:
            The AuthUser, or None when the credentials are missing, forged or stale
        """
        if not credentials:
            return None

        payload = {field: credentials.get(field) for field in WIDGET_FIELDS}
        if not self._verifier.verify(payload):
            return None

        if self._settings.max_age_seconds and not self._is_fresh(payload["auth_date"]):
            logger.warning("Telegram login for id=%s rejected: auth_date outside window", payload["id"])
            return None

        first_name = _widget_text(payload.get("first_name"))
        last_name = _widget_text(payload.get("last_name"))
        return AuthUser(
            id=str(payload["id"]),
            provider=PROVIDER_ID,
            name=f"{first_name} {last_name}".strip(),
            image=_widget_text(payload.get("photo_url")) or None,
            username=str(payload["username"]),
        )


__all__ = [
    "PROVIDER_ID",
    "SIGNATURE_FIELD",
    "WIDGET_FIELDS",
    "AUTH_DATE_CLOCK_SKEW_SECONDS",
    "build_check_string",
    "derive_signing_key",
    "sign_telegram_payload",
    "TelegramSignatureVerifier",
    "verify_telegram_payload",
    "TelegramLoginSettings",
    "get_telegram_login_settings",
    "TelegramCredentialsProvider",
]
