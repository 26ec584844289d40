"""
Session token pipeline.

A sign-in produces a session token (`sub`, profile defaults and one
connection per provider). The token is Fernet-encrypted into the session
cookie because connections carry provider access tokens. The frontend only
ever sees the public session built by `session_callback`.

Contains:
- SessionSettings: cookie, encryption and redirect configuration from environment
- SessionCodec: encrypts/decrypts session tokens
- jwt_callback: folds a sign-in (user + account) into the token
- session_callback / build_session: public session shape
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Mapping

from cryptography.fernet import Fernet, InvalidToken

from auth.models import AccountInfo, AuthUser
from auth.user_sync import UserSyncClient

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_MAX_AGE_SECONDS = 30 * 24 * 60 * 60
DEFAULT_COOKIE_NAME = "signon.session-token"
DEFAULT_SIGNIN_PAGE = "/auth/signin"


def _parse_bool(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(name: str, raw: str | None, default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass(frozen=True)
class SessionSettings:
    """Session and sign-in flow configuration loaded from environment variables."""

    encryption_key: str
    state_secret: str
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS
    state_ttl_seconds: int = 600
    cookie_name: str = DEFAULT_COOKIE_NAME
    cookie_secure: bool = True
    signin_page: str = DEFAULT_SIGNIN_PAGE
    callback_fallback: str = "/"

    def __repr__(self) -> str:
        return (
            f"SessionSettings(cookie_name={self.cookie_name!r}, "
            f"max_age_seconds={self.max_age_seconds}, signin_page={self.signin_page!r})"
        )


@lru_cache(maxsize=1)
def get_session_settings() -> SessionSettings:
    """Load session settings from environment variables."""
    encryption_key = os.getenv("SESSION_ENCRYPTION_KEY")
    state_secret = os.getenv("OAUTH_STATE_SECRET")

    if not encryption_key or not state_secret:
        missing = [
            name
            for name, value in (
                ("SESSION_ENCRYPTION_KEY", encryption_key),
                ("OAUTH_STATE_SECRET", state_secret),
            )
            if not value
        ]
        raise RuntimeError(f"Missing session env vars: {', '.join(missing)}")

    return SessionSettings(
        encryption_key=encryption_key,
        state_secret=state_secret,
        max_age_seconds=_parse_int(
            "SESSION_MAX_AGE_SECONDS", os.getenv("SESSION_MAX_AGE_SECONDS"), DEFAULT_MAX_AGE_SECONDS
        ),
        state_ttl_seconds=_parse_int(
            "OAUTH_STATE_TTL_SECONDS", os.getenv("OAUTH_STATE_TTL_SECONDS"), 600
        ),
        cookie_name=os.getenv("SESSION_COOKIE_NAME") or DEFAULT_COOKIE_NAME,
        cookie_secure=_parse_bool(os.getenv("SESSION_COOKIE_SECURE"), True),
        signin_page=os.getenv("SIGNIN_PAGE") or DEFAULT_SIGNIN_PAGE,
        callback_fallback=os.getenv("AUTH_CALLBACK_FALLBACK") or "/",
    )


# =============================================================================
# SESSION TOKEN ENCRYPTION
# =============================================================================

class SessionCodec:
    """Encrypts and decrypts session tokens."""

    def __init__(self, key: str, *, max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS) -> None:
        try:
            self._fernet = Fernet(key.encode("utf-8"))
        except Exception as exc:
            raise RuntimeError("SESSION_ENCRYPTION_KEY must be a valid Fernet key") from exc
        self._max_age_seconds = max_age_seconds

    @property
    def max_age_seconds(self) -> int:
        return self._max_age_seconds

    def encode(self, token: Mapping[str, Any]) -> str:
        now = int(time.time())
        stamped = dict(token)
        stamped.setdefault("iat", now)
        stamped["exp"] = now + self._max_age_seconds
        serialized = json.dumps(stamped, separators=(",", ":")).encode("utf-8")
        return self._fernet.encrypt(serialized).decode("ascii")

    def decode(self, blob: str | None) -> dict[str, Any] | None:
        """Return the token, or None if it is missing, tampered with or expired."""
        if not blob:
            return None
        try:
            decrypted = self._fernet.decrypt(blob.encode("ascii"), ttl=self._max_age_seconds)
        except (InvalidToken, UnicodeEncodeError):
            logger.debug("Discarding undecryptable session token")
            return None
        try:
            token = json.loads(decrypted.decode("utf-8"))
        except ValueError:
            return None
        return token if isinstance(token, dict) else None


# =============================================================================
# CALLBACKS
# =============================================================================

async def jwt_callback(
    token: Mapping[str, Any],
    *,
    user: AuthUser | None = None,
    account: AccountInfo | None = None,
    user_sync: UserSyncClient,
) -> dict[str, Any]:
    """
    Fold a sign-in into the session token.

    `user` sets the subject and profile defaults. `account` upserts the user
    on the backend and records (or replaces) the connection for that provider;
    connections from other providers are kept.

    Raises:
        UserSyncError: If the backend refuses the sign-in
    """
    updated = dict(token)
    if user is not None:
        updated["sub"] = user.id
        updated["name"] = user.name
        updated["picture"] = user.image

    if account is not None:
        response = await user_sync.sync_user(user, account.provider)
        connections = dict(updated.get("connections") or {})
        connections[account.provider] = {
            "name": (user.username if user else None) or "",
            "image": (user.image if user else None) or "",
            "access_token": account.access_token,
            "expiration_time": account.expires_at,
            "refresh_token": account.refresh_token,
            "refresh_token_expiration_time": account.refresh_token_expires_at,
            "has_linked_solana": bool(response.get("hasLinkedSolana")),
        }
        updated["connections"] = connections
        logger.info("Connected %s account for sub=%s", account.provider, updated.get("sub"))

    return updated


def _public_connections(connections: Mapping[str, Any] | None) -> dict[str, dict[str, Any]]:
    public: dict[str, dict[str, Any]] = {}
    for provider, connection in (connections or {}).items():
        if not isinstance(connection, Mapping):
            continue
        public[provider] = {
            "name": connection.get("name") or "",
            "username": connection.get("name") or "",
            "image": connection.get("image") or "",
            "has_linked_solana": bool(connection.get("has_linked_solana")),
        }
    return public


def session_callback(session: Mapping[str, Any], token: Mapping[str, Any]) -> dict[str, Any]:
    """Merge the token's subject and public connection data into the session."""
    return {
        **session,
        "user": {
            **(session.get("user") or {}),
            "connections": _public_connections(token.get("connections")),
            "id": token.get("sub"),
        },
    }


def build_session(token: Mapping[str, Any]) -> dict[str, Any]:
    """Build the public session for a decoded token."""
    expires = None
    if token.get("exp"):
        expires = datetime.fromtimestamp(int(token["exp"]), tz=timezone.utc).isoformat()
    base = {
        "user": {"name": token.get("name"), "image": token.get("picture")},
        "expires": expires,
    }
    return session_callback(base, token)


__all__ = [
    "SessionSettings",
    "get_session_settings",
    "SessionCodec",
    "jwt_callback",
    "session_callback",
    "build_session",
]
