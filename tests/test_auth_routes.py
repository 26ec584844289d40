"""
Sign-in route tests.

Runs the /auth router in a bare FastAPI app with TestClient. Discord is served
by an httpx.MockTransport and the user API by an in-memory fake.
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.routes import auth as auth_routes
from auth.discord import TOKEN_URL, USER_URL, DiscordAuthService, get_discord_oauth_settings
from auth.telegram import sign_telegram_payload
from auth.user_sync import UserSyncError
from tests.conftest import TEST_BOT_TOKEN

DISCORD_PROFILE = {
    "id": "80351110224678912",
    "username": "nelly",
    "global_name": "Nelly",
    "avatar": "abc123",
    "discriminator": "0",
}


class FakeUserSync:
    def __init__(self, response=None, error=None):
        self.calls = []
        self.response = response if response is not None else {"hasLinkedSolana": True}
        self.error = error

    async def sync_user(self, user, provider):
        self.calls.append((user.id, provider))
        if self.error is not None:
            raise self.error
        return self.response


def _discord_handler(request: httpx.Request) -> httpx.Response:
    if str(request.url) == TOKEN_URL:
        if "code=good-code" not in request.content.decode():
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(
            200,
            json={"access_token": "discord-access", "refresh_token": "discord-refresh", "expires_in": 3600},
        )
    if str(request.url) == USER_URL:
        return httpx.Response(200, json=DISCORD_PROFILE)
    return httpx.Response(404)


def _telegram_payload(**extra):
    fields = {
        "auth_date": 1700000000,
        "id": 42,
        "first_name": "Ada",
        "username": "ada",
        "photo_url": "https://t.me/i/ada.jpg",
    }
    return {**fields, "hash": sign_telegram_payload(fields, TEST_BOT_TOKEN), **extra}


@pytest.fixture
def user_sync(auth_env, monkeypatch):
    fake = FakeUserSync()
    monkeypatch.setattr(auth_routes, "_user_sync", fake)
    return fake


@pytest.fixture
def discord_service(auth_env, monkeypatch):
    service = DiscordAuthService(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(_discord_handler))
    )
    monkeypatch.setattr(auth_routes, "_discord_service", service)
    return service


@pytest.fixture
def client(auth_env, user_sync, discord_service):
    app = FastAPI()
    app.include_router(auth_routes.router)
    with TestClient(app) as test_client:
        yield test_client


def _discord_state(client, callback_url="/dashboard"):
    response = client.get("/auth/signin/discord", params={"callbackUrl": callback_url})
    assert response.status_code == 200
    query = parse_qs(urlparse(response.json()["url"]).query)
    return query["state"][0]


class TestProviders:
    def test_lists_configured_providers(self, client):
        response = client.get("/auth/providers")
        assert response.status_code == 200
        body = response.json()
        assert [provider["id"] for provider in body["providers"]] == ["discord", "telegram"]
        assert body["signin_page"] == "/auth/signin"

    def test_unconfigured_provider_is_hidden(self, client, monkeypatch):
        monkeypatch.delenv("DISCORD_CLIENT_ID")
        get_discord_oauth_settings.cache_clear()
        body = client.get("/auth/providers").json()
        assert [provider["id"] for provider in body["providers"]] == ["telegram"]


class TestTelegramSignIn:
    def test_valid_payload_signs_in(self, client, user_sync):
        response = client.post("/auth/callback/telegram", json=_telegram_payload())
        assert response.status_code == 200
        assert response.json() == {"ok": True, "url": "/"}
        assert "signon.session-token" in response.cookies
        assert user_sync.calls == [("42", "telegram")]

        session = client.get("/auth/session").json()
        assert session["user"]["id"] == "42"
        assert session["user"]["name"] == "Ada"
        assert session["user"]["connections"] == {
            "telegram": {
                "name": "ada",
                "username": "ada",
                "image": "https://t.me/i/ada.jpg",
                "hasLinkedSolana": True,
            }
        }
        assert session["expires"]

    def test_forged_payload_is_denied(self, client, user_sync):
        payload = _telegram_payload()
        payload["username"] = "mallory"
        response = client.post("/auth/callback/telegram", json=payload)
        assert response.status_code == 401
        assert response.json()["detail"] == "CredentialsSignin"
        assert "signon.session-token" not in response.cookies
        assert user_sync.calls == []

    def test_missing_hash_is_denied(self, client):
        payload = _telegram_payload()
        del payload["hash"]
        assert client.post("/auth/callback/telegram", json=payload).status_code == 401

    def test_relative_callback_url_is_kept(self, client):
        response = client.post(
            "/auth/callback/telegram", json=_telegram_payload(callbackUrl="/dashboard")
        )
        assert response.json()["url"] == "/dashboard"

    @pytest.mark.parametrize(
        "target",
        ["https://evil.example", "//evil.example/x", "/\\evil.example", "/\t/evil.example", "/\n/evil.example"],
    )
    def test_external_callback_url_is_replaced(self, client, target):
        response = client.post("/auth/callback/telegram", json=_telegram_payload(callbackUrl=target))
        assert response.json()["url"] == "/"

    def test_backend_rejection(self, client, user_sync):
        user_sync.error = UserSyncError("banned", status_code=403)
        response = client.post("/auth/callback/telegram", json=_telegram_payload())
        assert response.status_code == 403
        assert response.json()["detail"] == "AccessDenied"

    def test_backend_failure(self, client, user_sync):
        user_sync.error = UserSyncError("down")
        response = client.post("/auth/callback/telegram", json=_telegram_payload())
        assert response.status_code == 502
        assert response.json()["detail"] == "Callback"


class TestDiscordSignIn:
    def test_start_returns_authorization_url(self, client):
        response = client.get("/auth/signin/discord")
        url = urlparse(response.json()["url"])
        query = parse_qs(url.query)
        assert url.netloc == "discord.com"
        assert query["client_id"] == ["discord-client"]
        assert query["state"][0]

    def test_callback_signs_in_and_redirects(self, client, user_sync):
        state = _discord_state(client, "/dashboard")
        response = client.get(
            "/auth/callback/discord",
            params={"code": "good-code", "state": state},
            follow_redirects=False,
        )
        assert response.status_code == 302
        assert response.headers["location"] == "/dashboard"
        assert user_sync.calls == [("80351110224678912", "discord")]

        session = client.get("/auth/session").json()
        assert session["user"]["id"] == "80351110224678912"
        assert session["user"]["name"] == "Nelly"
        connection = session["user"]["connections"]["discord"]
        assert connection["name"] == "nelly"
        assert "access_token" not in connection

    def test_bad_code_redirects_to_signin_page(self, client):
        state = _discord_state(client)
        response = client.get(
            "/auth/callback/discord",
            params={"code": "bad-code", "state": state},
            follow_redirects=False,
        )
        assert response.status_code == 302
        assert response.headers["location"] == "/auth/signin?error=OAuthCallback"

    def test_invalid_state_redirects_to_signin_page(self, client):
        response = client.get(
            "/auth/callback/discord",
            params={"code": "good-code", "state": "forged"},
            follow_redirects=False,
        )
        assert response.headers["location"] == "/auth/signin?error=OAuthCallback"

    def test_missing_code(self, client):
        state = _discord_state(client)
        response = client.get(
            "/auth/callback/discord", params={"state": state}, follow_redirects=False
        )
        assert response.headers["location"] == "/auth/signin?error=OAuthCallback"

    def test_user_denied_access(self, client):
        response = client.get(
            "/auth/callback/discord",
            params={"error": "access_denied"},
            follow_redirects=False,
        )
        assert response.headers["location"] == "/auth/signin?error=AccessDenied"

    def test_backend_rejection_redirects(self, client, user_sync):
        user_sync.error = UserSyncError("banned", status_code=403)
        state = _discord_state(client)
        response = client.get(
            "/auth/callback/discord",
            params={"code": "good-code", "state": state},
            follow_redirects=False,
        )
        assert response.headers["location"] == "/auth/signin?error=AccessDenied"

    def test_not_configured(self, auth_env, user_sync, monkeypatch):
        monkeypatch.delenv("DISCORD_CLIENT_SECRET")
        app = FastAPI()
        app.include_router(auth_routes.router)
        with TestClient(app) as test_client:
            response = test_client.get("/auth/signin/discord")
        assert response.status_code == 404


class TestSession:
    def test_signed_out_session_is_empty(self, client):
        assert client.get("/auth/session").json() == {}

    def test_garbage_cookie_is_ignored(self, client):
        client.cookies.set("signon.session-token", "garbage")
        assert client.get("/auth/session").json() == {}

    def test_connections_accumulate_across_providers(self, client):
        client.post("/auth/callback/telegram", json=_telegram_payload())
        state = _discord_state(client)
        client.get(
            "/auth/callback/discord",
            params={"code": "good-code", "state": state},
            follow_redirects=False,
        )
        session = client.get("/auth/session").json()
        assert set(session["user"]["connections"]) == {"telegram", "discord"}
        assert session["user"]["id"] == "80351110224678912"

    def test_signout_clears_session(self, client):
        client.post("/auth/callback/telegram", json=_telegram_payload())
        assert client.get("/auth/session").json()["user"]["id"] == "42"

        response = client.post("/auth/signout")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "url": "/auth/signin"}
        assert client.get("/auth/session").json() == {}
