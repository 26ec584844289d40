"""
Signed, short-lived OAuth state tokens.

The state round-trips through the identity provider and carries the URL the
browser returns to once sign-in completes.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

STATE_SALT = "signon-oauth-state"


class OAuthStateManager:
    """Signs and validates short-lived OAuth state payloads."""

    def __init__(self, secret: str, *, ttl_seconds: int = 600) -> None:
        self._serializer = URLSafeTimedSerializer(secret, salt=STATE_SALT)
        self._ttl_seconds = ttl_seconds

    def issue(self, *, provider: str, callback_url: str) -> str:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self._ttl_seconds)
        payload = {
            "provider": provider,
            "callback_url": callback_url,
            "nonce": uuid4().hex,
            "exp": expires_at.isoformat(),
        }
        return self._serializer.dumps(payload)

    def verify(self, token: str, *, provider: str | None = None) -> dict[str, Any]:
        try:
            data = self._serializer.loads(token, max_age=self._ttl_seconds)
        except SignatureExpired as exc:
            raise ValueError("OAuth state expired") from exc
        except BadSignature as exc:
            raise ValueError("OAuth state invalid") from exc
        if provider is not None and data.get("provider") != provider:
            raise ValueError("OAuth state issued for another provider")
        return data


__all__ = ["OAuthStateManager", "STATE_SALT"]
