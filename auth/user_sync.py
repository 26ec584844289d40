"""
Backend user sync.

Every sign-in that comes with a provider account is reported to the user API,
which creates or updates the local user and tells us about linked wallets.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any

import httpx

from auth.models import AuthUser

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SECONDS = 10.0


class UserSyncError(RuntimeError):
    """Raised when the user API refuses or fails a sign-in upsert."""

    def __init__(self, message: str, *, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


class UserSyncClient:
    """Posts sign-ins to `{api_url}/user/auth`."""

    def __init__(self, api_url: str, *, http_client: httpx.AsyncClient | None = None) -> None:
        self._endpoint = f"{api_url.rstrip('/')}/user/auth"
        self._http_client = http_client

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(self._endpoint, json=body)
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
            return await client.post(self._endpoint, json=body)

    async def sync_user(self, user: AuthUser | None, provider: str) -> dict[str, Any]:
        """
        Upsert the signed-in user on the backend.

        Returns:
            The API's JSON response (e.g. {"hasLinkedSolana": true})

        Raises:
            UserSyncError: On transport failure, non-2xx status or an `error` body
        """
        body = {
            "provider": (user.provider if user else None) or provider,
            "providerId": user.id if user else "",
            "name": user.name if user else "",
            "avatarUrl": (user.image if user else None) or "",
        }
        try:
            response = await self._post(body)
        except httpx.HTTPError as exc:
            logger.error("User API unreachable at %s: %s", self._endpoint, exc)
            raise UserSyncError("User API unreachable") from exc

        try:
            result = response.json()
        except ValueError:
            result = {}
        if not isinstance(result, dict):
            result = {}

        if result.get("error"):
            logger.warning(
                "User API rejected %s sign-in for providerId=%s: %s",
                body["provider"],
                body["providerId"],
                result["error"],
            )
            raise UserSyncError(str(result["error"]), status_code=403)
        if response.is_error:
            logger.error("User API returned HTTP %s", response.status_code)
            raise UserSyncError(f"User API returned HTTP {response.status_code}")

        return result


@lru_cache(maxsize=1)
def get_user_api_url() -> str:
    """Load the user API base URL from environment variables."""
    api_url = os.getenv("USER_API_URL")
    if not api_url:
        raise RuntimeError("Missing user API env vars: USER_API_URL")
    return api_url


__all__ = ["UserSyncError", "UserSyncClient", "get_user_api_url"]
