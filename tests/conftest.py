"""Shared fixtures for the sign-in API tests."""

import hashlib
import hmac

import pytest

from api.middleware import get_rate_limiter
from api.routes.auth import reset_services
from auth.discord import get_discord_oauth_settings
from auth.session import get_session_settings
from auth.telegram import get_telegram_login_settings
from auth.user_sync import get_user_api_url

# Test keys (generated for testing only)
TEST_ENCRYPTION_KEY = "mDTmNQg6OxP_qMsdahXWWqujA6BfpPjYyn_YkpXeo0o="
TEST_BOT_TOKEN = "botsecret"
TEST_STATE_SECRET = "state-secret-for-tests"

AUTH_ENV_VARS = (
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_AUTH_MAX_AGE_SECONDS",
    "DISCORD_CLIENT_ID",
    "DISCORD_CLIENT_SECRET",
    "DISCORD_REDIRECT_URI",
    "DISCORD_SCOPES",
    "SESSION_ENCRYPTION_KEY",
    "SESSION_MAX_AGE_SECONDS",
    "SESSION_COOKIE_NAME",
    "SESSION_COOKIE_SECURE",
    "OAUTH_STATE_SECRET",
    "OAUTH_STATE_TTL_SECONDS",
    "SIGNIN_PAGE",
    "AUTH_CALLBACK_FALLBACK",
    "USER_API_URL",
    "TRUST_PROXY_HEADERS",
)


def _clear_caches() -> None:
    get_telegram_login_settings.cache_clear()
    get_discord_oauth_settings.cache_clear()
    get_session_settings.cache_clear()
    get_user_api_url.cache_clear()
    reset_services()
    get_rate_limiter().reset()


def reference_signature(check_string: str, secret: str) -> str:
    """HMAC-SHA256(check_string) keyed with SHA-256(secret), computed independently."""
    key = hashlib.sha256(secret.encode("utf-8")).digest()
    return hmac.new(key, check_string.encode("utf-8"), hashlib.sha256).hexdigest()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Start every test with no auth configuration and empty caches."""
    for name in AUTH_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    _clear_caches()
    yield
    _clear_caches()


@pytest.fixture
def auth_env(monkeypatch):
    """Configure both providers, the session and the user API."""
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", TEST_BOT_TOKEN)
    monkeypatch.setenv("DISCORD_CLIENT_ID", "discord-client")
    monkeypatch.setenv("DISCORD_CLIENT_SECRET", "discord-secret")
    monkeypatch.setenv("DISCORD_REDIRECT_URI", "http://testserver/auth/callback/discord")
    monkeypatch.setenv("SESSION_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    monkeypatch.setenv("SESSION_COOKIE_SECURE", "false")
    monkeypatch.setenv("OAUTH_STATE_SECRET", TEST_STATE_SECRET)
    monkeypatch.setenv("USER_API_URL", "http://users.test")
    _clear_caches()
    return monkeypatch
