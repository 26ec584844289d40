"""
Discord OAuth.

Contains:
- DiscordOAuthSettings: OAuth configuration from environment
- DiscordAuthService: Authorization URL, code exchange and profile lookup
- discord_profile_to_user / token_response_to_account: provider data to identity
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, AsyncIterator, Mapping
from urllib.parse import urlencode

import httpx

from auth.models import AccountInfo, AccountType, AuthUser

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

PROVIDER_ID = "discord"
API_BASE_URL = "https://discord.com/api"
AUTHORIZE_URL = f"{API_BASE_URL}/oauth2/authorize"
TOKEN_URL = f"{API_BASE_URL}/oauth2/token"
USER_URL = f"{API_BASE_URL}/users/@me"
CDN_URL = "https://cdn.discordapp.com"
DEFAULT_SCOPES = ("identify", "email")
HTTP_TIMEOUT_SECONDS = 10.0


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass(frozen=True)
class DiscordOAuthSettings:
    """Configuration for Discord OAuth."""

    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: tuple[str, ...] = DEFAULT_SCOPES

    def __repr__(self) -> str:
        return (
            f"DiscordOAuthSettings(client_id={self.client_id!r}, client_secret='***', "
            f"redirect_uri={self.redirect_uri!r}, scopes={self.scopes!r})"
        )


@lru_cache(maxsize=1)
def get_discord_oauth_settings() -> DiscordOAuthSettings:
    """Load Discord OAuth settings from environment variables."""
    client_id = os.getenv("DISCORD_CLIENT_ID")
    client_secret = os.getenv("DISCORD_CLIENT_SECRET")
    redirect_uri = os.getenv("DISCORD_REDIRECT_URI")
    scopes_raw = os.getenv("DISCORD_SCOPES", "")

    if not client_id or not client_secret or not redirect_uri:
        missing = [
            name
            for name, value in (
                ("DISCORD_CLIENT_ID", client_id),
                ("DISCORD_CLIENT_SECRET", client_secret),
                ("DISCORD_REDIRECT_URI", redirect_uri),
            )
            if not value
        ]
        raise RuntimeError(f"Missing Discord OAuth env vars: {', '.join(missing)}")

    # Space-separated, like the scope parameter itself
    scopes = tuple(s.strip() for s in scopes_raw.split() if s.strip()) or DEFAULT_SCOPES

    return DiscordOAuthSettings(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        scopes=scopes,
    )


# =============================================================================
# AUTH SERVICE
# =============================================================================

class DiscordAuthService:
    """Handles the Discord authorization-code flow."""

    def __init__(
        self,
        settings: DiscordOAuthSettings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_discord_oauth_settings()
        self._http_client = http_client

    @property
    def settings(self) -> DiscordOAuthSettings:
        return self._settings

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
            yield client

    def get_auth_url(self, state: str) -> str:
        """
        Generate the Discord authorization URL.

        Args:
            state: Signed state token (from OAuthStateManager)
        """
        query = urlencode(
            {
                "client_id": self._settings.client_id,
                "redirect_uri": self._settings.redirect_uri,
                "response_type": "code",
                "scope": " ".join(self._settings.scopes),
                "state": state,
                "prompt": "none",
            }
        )
        return f"{AUTHORIZE_URL}?{query}"

    async def exchange_code_for_token(self, code: str) -> dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Returns:
            Token response containing access_token, refresh_token, expires_in, ...

        Raises:
            ValueError: If the exchange fails
        """
        form = {
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._settings.redirect_uri,
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    TOKEN_URL,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise ValueError(f"Discord token exchange failed: {exc}") from exc

        result = _json_or_empty(response)
        if response.status_code != 200 or "error" in result or not result.get("access_token"):
            error_desc = result.get("error_description", result.get("error", f"HTTP {response.status_code}"))
            logger.error("Discord token exchange failed: %s", error_desc)
            raise ValueError(f"Discord Auth Error: {error_desc}")

        # Discord reports a relative lifetime; keep an absolute expiry as well
        if "expires_in" in result and "expires_at" not in result:
            result["expires_at"] = int(time.time()) + int(result["expires_in"])
        return result

    async def fetch_user(self, access_token: str) -> dict[str, Any]:
        """
        Fetch the signed-in user's profile.

        Raises:
            ValueError: If Discord rejects the token
        """
        try:
            async with self._client() as client:
                response = await client.get(
                    USER_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as exc:
            raise ValueError(f"Discord profile request failed: {exc}") from exc

        if response.status_code != 200:
            logger.warning(
                "Failed to fetch Discord profile: status=%s body=%s",
                response.status_code,
                response.text[:200],
            )
            raise ValueError(f"Discord profile request failed: HTTP {response.status_code}")

        profile = _json_or_empty(response)
        if not profile.get("id"):
            raise ValueError("Discord profile response missing id")
        return profile


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


# =============================================================================
# PROFILE CONVERSION
# =============================================================================

def avatar_url(profile: Mapping[str, Any]) -> str:
    """Return the CDN avatar URL, or Discord's default avatar when none is set."""
    user_id = str(profile["id"])
    avatar = profile.get("avatar")
    if avatar:
        extension = "gif" if str(avatar).startswith("a_") else "png"
        return f"{CDN_URL}/avatars/{user_id}/{avatar}.{extension}"

    discriminator = str(profile.get("discriminator") or "0")
    if discriminator == "0":
        index = (int(user_id) >> 22) % 6
    else:
        index = int(discriminator) % 5
    return f"{CDN_URL}/embed/avatars/{index}.png"


def discord_profile_to_user(profile: Mapping[str, Any]) -> AuthUser:
    """Convert a /users/@me response to an AuthUser."""
    username = profile.get("username") or ""
    return AuthUser(
        id=str(profile["id"]),
        provider=PROVIDER_ID,
        name=profile.get("global_name") or username,
        image=avatar_url(profile),
        username=username or None,
    )


def token_response_to_account(profile: Mapping[str, Any], token_result: Mapping[str, Any]) -> AccountInfo:
    """Build the AccountInfo for a completed Discord sign-in."""
    expires_at = token_result.get("expires_at")
    return AccountInfo(
        provider=PROVIDER_ID,
        type=AccountType.OAUTH,
        provider_account_id=str(profile["id"]),
        access_token=token_result.get("access_token"),
        expires_at=int(expires_at) if expires_at is not None else None,
        refresh_token=token_result.get("refresh_token"),
    )


__all__ = [
    "PROVIDER_ID",
    "DiscordOAuthSettings",
    "get_discord_oauth_settings",
    "DiscordAuthService",
    "avatar_url",
    "discord_profile_to_user",
    "token_response_to_account",
]
