"""
Sign-in Routes Module.

Handles sign-in flows:
- GET /auth/providers: List configured providers
- GET /auth/signin/discord: Start Discord OAuth flow
- GET /auth/callback/discord: Handle Discord OAuth callback
- POST /auth/callback/telegram: Verify a Telegram login widget payload
- GET /auth/session: Current public session
- POST /auth/signout: Clear the session cookie
"""

import logging
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlsplit, urlunparse

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from api.models import (
    AuthorizationUrlResponse,
    ConnectionResponse,
    ProviderResponse,
    ProvidersResponse,
    SessionResponse,
    SessionUserResponse,
    SignInResponse,
    TelegramCredentials,
)
from auth import discord, telegram
from auth.discord import DiscordAuthService, discord_profile_to_user, token_response_to_account
from auth.models import AccountInfo, AccountType
from auth.providers import configured_providers
from auth.session import (
    SessionCodec,
    SessionSettings,
    build_session,
    get_session_settings,
    jwt_callback,
)
from auth.state import OAuthStateManager
from auth.telegram import TelegramCredentialsProvider
from auth.user_sync import UserSyncClient, UserSyncError, get_user_api_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# Lazy initialization of services
_session_codec: SessionCodec | None = None
_state_manager: OAuthStateManager | None = None
_discord_service: DiscordAuthService | None = None
_telegram_provider: TelegramCredentialsProvider | None = None
_user_sync: UserSyncClient | None = None

# Error codes understood by the sign-in page
ERROR_OAUTH_CALLBACK = "OAuthCallback"
ERROR_CREDENTIALS = "CredentialsSignin"
ERROR_ACCESS_DENIED = "AccessDenied"
ERROR_CALLBACK = "Callback"


def reset_services() -> None:
    """Drop cached services so the next request rebuilds them from settings."""
    global _session_codec, _state_manager, _discord_service, _telegram_provider, _user_sync
    _session_codec = None
    _state_manager = None
    _discord_service = None
    _telegram_provider = None
    _user_sync = None


def _get_settings() -> SessionSettings:
    try:
        return get_session_settings()
    except RuntimeError as exc:
        logger.error("Session configuration is invalid: %s", exc)
        raise HTTPException(status_code=500, detail="Session configuration is invalid") from exc


def _get_session_codec() -> SessionCodec:
    global _session_codec
    if _session_codec is None:
        settings = _get_settings()
        _session_codec = SessionCodec(settings.encryption_key, max_age_seconds=settings.max_age_seconds)
    return _session_codec


def _get_state_manager() -> OAuthStateManager:
    global _state_manager
    if _state_manager is None:
        settings = _get_settings()
        _state_manager = OAuthStateManager(settings.state_secret, ttl_seconds=settings.state_ttl_seconds)
    return _state_manager


def _get_discord_service() -> DiscordAuthService:
    global _discord_service
    if _discord_service is None:
        try:
            _discord_service = DiscordAuthService()
        except RuntimeError as exc:
            logger.warning("Discord sign-in requested but not configured: %s", exc)
            raise HTTPException(status_code=404, detail="Provider not configured") from exc
    return _discord_service


def _get_telegram_provider() -> TelegramCredentialsProvider:
    global _telegram_provider
    if _telegram_provider is None:
        try:
            _telegram_provider = TelegramCredentialsProvider()
        except RuntimeError as exc:
            logger.warning("Telegram sign-in requested but not configured: %s", exc)
            raise HTTPException(status_code=404, detail="Provider not configured") from exc
    return _telegram_provider


def _get_user_sync() -> UserSyncClient:
    global _user_sync
    if _user_sync is None:
        try:
            _user_sync = UserSyncClient(get_user_api_url())
        except RuntimeError as exc:
            logger.error("User API configuration is invalid: %s", exc)
            raise HTTPException(status_code=500, detail="User API configuration is invalid") from exc
    return _user_sync


def _safe_callback_url(callback_url: str | None, settings: SessionSettings) -> str:
    """Only same-site relative paths are accepted as post-sign-in targets."""
    if not callback_url or not callback_url.startswith("/") or callback_url.startswith("//"):
        return settings.callback_fallback
    # Browsers read a backslash as a slash and drop tabs and newlines
    if "\\" in callback_url or any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in callback_url):
        return settings.callback_fallback
    parts = urlsplit(callback_url)
    if parts.scheme or parts.netloc:
        return settings.callback_fallback
    return callback_url


def _signin_error_url(error: str) -> str:
    settings = _get_settings()
    parsed = urlparse(settings.signin_page)
    query = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query["error"] = error
    return urlunparse(parsed._replace(query=urlencode(query)))


def _signin_error_redirect(error: str) -> RedirectResponse:
    return RedirectResponse(_signin_error_url(error), status_code=status.HTTP_302_FOUND)


def _current_token(request: Request) -> dict[str, Any]:
    settings = _get_settings()
    token = _get_session_codec().decode(request.cookies.get(settings.cookie_name))
    return token or {}


def _set_session_cookie(response: Any, token: dict[str, Any]) -> None:
    settings = _get_settings()
    codec = _get_session_codec()
    response.set_cookie(
        settings.cookie_name,
        codec.encode(token),
        max_age=codec.max_age_seconds,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )


def _sync_error_code(exc: UserSyncError) -> str:
    return ERROR_ACCESS_DENIED if exc.status_code == 403 else ERROR_CALLBACK


# =============================================================================
# GET /auth/providers - List configured providers
# =============================================================================

@router.get("/providers", response_model=ProvidersResponse)
async def list_providers() -> ProvidersResponse:
    settings = _get_settings()
    return ProvidersResponse(
        providers=[
            ProviderResponse(
                id=info.id,
                name=info.name,
                type=info.type,
                signin_url=info.signin_url,
                callback_url=info.callback_url,
            )
            for info in configured_providers()
        ],
        signin_page=settings.signin_page,
    )


# =============================================================================
# GET /auth/signin/discord - Start Discord OAuth flow
# =============================================================================

@router.get("/signin/discord", response_model=AuthorizationUrlResponse)
async def start_discord_signin(
    callback_url: str | None = Query(default=None, alias="callbackUrl"),
) -> AuthorizationUrlResponse:
    """
    Start Discord OAuth flow.

    Query Params:
        callbackUrl: Relative path to return to after sign-in

    Returns:
        {"url": "https://discord.com/api/oauth2/authorize?..."}
    """
    service = _get_discord_service()
    settings = _get_settings()
    state_token = _get_state_manager().issue(
        provider=discord.PROVIDER_ID,
        callback_url=_safe_callback_url(callback_url, settings),
    )
    return AuthorizationUrlResponse(url=service.get_auth_url(state_token))


# =============================================================================
# GET /auth/callback/discord - Handle OAuth callback
# =============================================================================

@router.get("/callback/discord")
async def discord_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    """
    Handle Discord OAuth callback.

    Called by Discord after the user approves (or denies) access.
    """
    if error:
        logger.info("Discord sign-in denied by user: %s", error)
        return _signin_error_redirect(ERROR_ACCESS_DENIED)

    if not state or not code:
        return _signin_error_redirect(ERROR_OAUTH_CALLBACK)

    try:
        payload = _get_state_manager().verify(state, provider=discord.PROVIDER_ID)
    except ValueError as exc:
        logger.warning("Discord callback rejected: %s", exc)
        return _signin_error_redirect(ERROR_OAUTH_CALLBACK)

    service = _get_discord_service()
    try:
        token_result = await service.exchange_code_for_token(code)
        profile = await service.fetch_user(token_result["access_token"])
    except ValueError as exc:
        logger.warning("Discord sign-in failed: %s", exc)
        return _signin_error_redirect(ERROR_OAUTH_CALLBACK)

    user = discord_profile_to_user(profile)
    account = token_response_to_account(profile, token_result)
    try:
        token = await jwt_callback(
            _current_token(request),
            user=user,
            account=account,
            user_sync=_get_user_sync(),
        )
    except UserSyncError as exc:
        return _signin_error_redirect(_sync_error_code(exc))

    settings = _get_settings()
    response = RedirectResponse(
        _safe_callback_url(payload.get("callback_url"), settings),
        status_code=status.HTTP_302_FOUND,
    )
    _set_session_cookie(response, token)
    logger.info("Discord sign-in completed for user_id=%s", user.id)
    return response


# =============================================================================
# POST /auth/callback/telegram - Verify Telegram widget payload
# =============================================================================

@router.post("/callback/telegram", response_model=SignInResponse)
async def telegram_callback(request: Request, credentials: TelegramCredentials) -> JSONResponse:
    """
    Sign in with a Telegram login widget payload.

    Body:
        {"id": ..., "username": ..., "auth_date": ..., "hash": "...", ...}

    Returns:
        {"ok": true, "url": "<callback url>"}
    """
    provider = _get_telegram_provider()
    user = provider.authorize(credentials.model_dump(exclude={"callback_url"}))
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=ERROR_CREDENTIALS)

    account = AccountInfo(
        provider=telegram.PROVIDER_ID,
        type=AccountType.CREDENTIALS,
        provider_account_id=user.id,
    )
    try:
        token = await jwt_callback(
            _current_token(request),
            user=user,
            account=account,
            user_sync=_get_user_sync(),
        )
    except UserSyncError as exc:
        code = status.HTTP_403_FORBIDDEN if exc.status_code == 403 else status.HTTP_502_BAD_GATEWAY
        raise HTTPException(status_code=code, detail=_sync_error_code(exc)) from exc

    settings = _get_settings()
    body = SignInResponse(url=_safe_callback_url(credentials.callback_url, settings))
    response = JSONResponse(body.model_dump())
    _set_session_cookie(response, token)
    logger.info("Telegram sign-in completed for user_id=%s", user.id)
    return response


# =============================================================================
# GET /auth/session - Current session
# =============================================================================

@router.get("/session")
async def get_session(request: Request) -> dict[str, Any]:
    """Return the public session, or {} when signed out."""
    token = _current_token(request)
    if not token.get("sub"):
        return {}

    session = build_session(token)
    user = session["user"]
    return SessionResponse(
        user=SessionUserResponse(
            id=str(user["id"]),
            name=user.get("name"),
            image=user.get("image"),
            connections={
                provider: ConnectionResponse(**connection)
                for provider, connection in user["connections"].items()
            },
        ),
        expires=session.get("expires"),
    ).model_dump(by_alias=True)


# =============================================================================
# POST /auth/signout - Clear session
# =============================================================================

@router.post("/signout")
async def sign_out() -> JSONResponse:
    settings = _get_settings()
    response = JSONResponse({"ok": True, "url": settings.signin_page})
    response.delete_cookie(settings.cookie_name, path="/")
    return response


__all__ = ["router", "reset_services"]
