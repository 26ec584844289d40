"""
Telegram credentials provider tests.

Tests TelegramCredentialsProvider.authorize() and settings loading.
"""

import pytest

from auth.models import AuthUser
from auth.observer import NullVerificationObserver
from auth.telegram import (
    AUTH_DATE_CLOCK_SKEW_SECONDS,
    TelegramCredentialsProvider,
    TelegramLoginSettings,
    get_telegram_login_settings,
    sign_telegram_payload,
)

BOT_TOKEN = "botsecret"
NOW = 1700000100


def _widget_payload(**overrides):
    fields = {
        "auth_date": 1700000000,
        "id": 42,
        "first_name": "Ada",
        "last_name": "Lovelace",
        "username": "ada",
        "photo_url": "https://t.me/i/userpic/ada.jpg",
    }
    fields.update(overrides)
    fields = {key: value for key, value in fields.items() if value is not None}
    return {**fields, "hash": sign_telegram_payload(fields, BOT_TOKEN)}


@pytest.fixture
def provider():
    return TelegramCredentialsProvider(
        TelegramLoginSettings(bot_token=BOT_TOKEN),
        observer=NullVerificationObserver(),
        clock=lambda: NOW,
    )


class TestAuthorize:
    """Test turning widget data into an AuthUser."""

    def test_valid_payload_returns_user(self, provider):
        user = provider.authorize(_widget_payload())
        assert user == AuthUser(
            id="42",
            provider="telegram",
            name="Ada Lovelace",
            image="https://t.me/i/userpic/ada.jpg",
            username="ada",
        )

    def test_name_without_last_name(self, provider):
        user = provider.authorize(_widget_payload(last_name=None))
        assert user is not None
        assert user.name == "Ada"

    def test_undefined_last_name_is_ignored(self, provider):
        payload = _widget_payload(last_name=None)
        payload["last_name"] = "undefined"
        user = provider.authorize(payload)
        assert user is not None
        assert user.name == "Ada"

    def test_missing_photo(self, provider):
        user = provider.authorize(_widget_payload(photo_url=None))
        assert user is not None
        assert user.image is None

    def test_forged_payload_returns_none(self, provider):
        payload = _widget_payload()
        payload["id"] = 43
        assert provider.authorize(payload) is None

    @pytest.mark.parametrize("credentials", [None, {}])
    def test_empty_credentials(self, provider, credentials):
        assert provider.authorize(credentials) is None

    def test_fields_outside_the_widget_are_ignored(self, provider):
        payload = _widget_payload()
        payload["role"] = "admin"
        user = provider.authorize(payload)
        assert user is not None
        assert not hasattr(user, "role")

    def test_missing_username_is_rejected(self, provider):
        assert provider.authorize(_widget_payload(username=None)) is None


class TestFreshness:
    """Test the optional auth_date window."""

    def _provider(self, max_age, now):
        return TelegramCredentialsProvider(
            TelegramLoginSettings(bot_token=BOT_TOKEN, max_age_seconds=max_age),
            observer=NullVerificationObserver(),
            clock=lambda: now,
        )

    def test_disabled_by_default(self):
        provider = self._provider(0, now=NOW + 10**7)
        assert provider.authorize(_widget_payload()) is not None

    def test_fresh_login_accepted(self):
        provider = self._provider(300, now=1700000000 + 299)
        assert provider.authorize(_widget_payload()) is not None

    def test_stale_login_rejected(self):
        provider = self._provider(300, now=1700000000 + 301)
        assert provider.authorize(_widget_payload()) is None

    def test_future_login_rejected(self):
        provider = self._provider(300, now=1700000000 - AUTH_DATE_CLOCK_SKEW_SECONDS - 1)
        assert provider.authorize(_widget_payload()) is None

    def test_small_clock_skew_tolerated(self):
        provider = self._provider(300, now=1700000000 - AUTH_DATE_CLOCK_SKEW_SECONDS)
        assert provider.authorize(_widget_payload()) is not None

    def test_missing_auth_date_rejected_when_window_enabled(self):
        provider = self._provider(300, now=NOW)
        assert provider.authorize(_widget_payload(auth_date=None)) is None


class TestSettings:
    """Test environment loading."""

    def test_missing_bot_token(self):
        with pytest.raises(RuntimeError, match="TELEGRAM_BOT_TOKEN"):
            get_telegram_login_settings()

    def test_loads_from_environment(self, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", BOT_TOKEN)
        monkeypatch.setenv("TELEGRAM_AUTH_MAX_AGE_SECONDS", "86400")
        settings = get_telegram_login_settings()
        assert settings.bot_token == BOT_TOKEN
        assert settings.max_age_seconds == 86400

    def test_invalid_max_age(self, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", BOT_TOKEN)
        monkeypatch.setenv("TELEGRAM_AUTH_MAX_AGE_SECONDS", "soon")
        with pytest.raises(RuntimeError, match="TELEGRAM_AUTH_MAX_AGE_SECONDS"):
            get_telegram_login_settings()

    def test_repr_hides_bot_token(self):
        assert BOT_TOKEN not in repr(TelegramLoginSettings(bot_token=BOT_TOKEN))

    def test_provider_reads_environment(self, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", BOT_TOKEN)
        provider = TelegramCredentialsProvider(observer=NullVerificationObserver())
        assert provider.settings.bot_token == BOT_TOKEN
        assert provider.authorize(_widget_payload()) is not None
