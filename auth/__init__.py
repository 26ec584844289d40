"""
Authentication module.

Contains:
- Telegram signed login (telegram.py)
- Discord OAuth (discord.py)
- OAuth state tokens (state.py)
- Session token pipeline (session.py)
- Backend user sync (user_sync.py)
- Provider registry (providers.py)
"""

from auth.models import AccountInfo, AccountType, AuthUser

from auth.observer import (
    LoggingVerificationObserver,
    NullVerificationObserver,
    VerificationObserver,
    redact_payload,
)

from auth.telegram import (
    TelegramCredentialsProvider,
    TelegramLoginSettings,
    TelegramSignatureVerifier,
    build_check_string,
    get_telegram_login_settings,
    sign_telegram_payload,
    verify_telegram_payload,
)

from auth.discord import (
    DiscordAuthService,
    DiscordOAuthSettings,
    discord_profile_to_user,
    get_discord_oauth_settings,
    token_response_to_account,
)

from auth.state import OAuthStateManager

from auth.user_sync import UserSyncClient, UserSyncError, get_user_api_url

from auth.session import (
    SessionCodec,
    SessionSettings,
    build_session,
    get_session_settings,
    jwt_callback,
    session_callback,
)

__all__ = [
    # Identity
    "AccountInfo",
    "AccountType",
    "AuthUser",
    # Observability
    "VerificationObserver",
    "LoggingVerificationObserver",
    "NullVerificationObserver",
    "redact_payload",
    # Telegram
    "TelegramSignatureVerifier",
    "TelegramCredentialsProvider",
    "TelegramLoginSettings",
    "build_check_string",
    "sign_telegram_payload",
    "verify_telegram_payload",
    "get_telegram_login_settings",
    # Discord
    "DiscordOAuthSettings",
    "DiscordAuthService",
    "get_discord_oauth_settings",
    "discord_profile_to_user",
    "token_response_to_account",
    # Flow
    "OAuthStateManager",
    "UserSyncClient",
    "UserSyncError",
    "get_user_api_url",
    "SessionSettings",
    "SessionCodec",
    "get_session_settings",
    "jwt_callback",
    "session_callback",
    "build_session",
]
