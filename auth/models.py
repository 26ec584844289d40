"""
Identity dataclasses shared by the providers and the session callbacks.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AccountType(str, Enum):
    OAUTH = "oauth"
    CREDENTIALS = "credentials"


@dataclass(frozen=True)
class AuthUser:
    """A user as returned by a provider after a successful sign-in."""

    id: str
    provider: str
    name: str = ""
    image: str | None = None
    username: str | None = None


@dataclass(frozen=True)
class AccountInfo:
    """The provider account a sign-in came through."""

    provider: str
    type: AccountType
    provider_account_id: str
    access_token: str | None = None
    expires_at: int | None = None
    refresh_token: str | None = None
    refresh_token_expires_at: int | None = None


__all__ = ["AccountType", "AuthUser", "AccountInfo"]
