"""
Integration Tests for Sign in with X (OAuth 2.0 + PKCE)

The X token and profile endpoints are served by an httpx MockTransport; the
browser side runs through the server's ASGI app.

Test Coverage:
- Login is unavailable (503) without client credentials
- Login redirects to X with state and S256 code challenge, and sets the state cookie
- Callback rejects a mismatched state
- Callback exchanges the code, upserts the user and sets the session cookie
- Token exchange failures redirect with an error code
- /api/auth/user and /api/logout use the session cookie
"""

import types
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from goodbags.auth import (
    SESSION_COOKIE,
    STATE_COOKIE,
    TWITTER_TOKEN_URL,
    code_challenge,
    safe_return_path,
)

from .conftest import mock_http_client

pytestmark = pytest.mark.asyncio


def enable_login(server: types.ModuleType, handler) -> None:
    server.settings.twitter_client_id = "client-id"
    server.settings.twitter_client_secret = "client-secret"
    server.twitter_auth.client = mock_http_client(handler)


def x_api(status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == TWITTER_TOKEN_URL:
            if status != 200:
                return httpx.Response(status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "access-123", "token_type": "bearer"})
        assert request.headers["authorization"] == "Bearer access-123"
        return httpx.Response(
            200,
            json={
                "data": {
                    "id": "777",
                    "username": "gooddev",
                    "name": "Good Dev",
                    "profile_image_url": "https://pbs.twimg.com/p/abc_normal.jpg",
                }
            },
        )

    return handler


async def start_login(api_client: httpx.AsyncClient, return_to: str = "/launch") -> str:
    resp = await api_client.get("/api/login", params={"returnTo": return_to})
    assert resp.status_code == 302
    query = parse_qs(urlparse(resp.headers["location"]).query)
    return query["state"][0]


async def test_code_challenge_matches_rfc_example():
    # RFC 7636 appendix B
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


async def test_safe_return_path():
    assert safe_return_path("/launch") == "/launch"
    assert safe_return_path("//evil.test") == "/"
    assert safe_return_path("https://evil.test") == "/"
    assert safe_return_path(None) == "/"


async def test_login_unconfigured(api_client: httpx.AsyncClient):
    resp = await api_client.get("/api/login")
    assert resp.status_code == 503


async def test_login_redirects_to_x(patched_server_module: types.ModuleType, api_client: httpx.AsyncClient):
    enable_login(patched_server_module, x_api())
    resp = await api_client.get("/api/login")

    assert resp.status_code == 302
    location = urlparse(resp.headers["location"])
    assert location.netloc == "x.com"
    query = parse_qs(location.query)
    assert query["client_id"] == ["client-id"]
    assert query["code_challenge_method"] == ["S256"]
    assert query["redirect_uri"] == ["http://test/api/auth/twitter/callback"]
    assert api_client.cookies.get(STATE_COOKIE) == query["state"][0]


async def test_callback_with_wrong_state(patched_server_module: types.ModuleType, api_client: httpx.AsyncClient):
    enable_login(patched_server_module, x_api())
    await start_login(api_client)
    resp = await api_client.get("/api/auth/twitter/callback", params={"code": "abc", "state": "forged"})
    assert resp.status_code == 302
    assert resp.headers["location"] == "/?error=invalid_state"


async def test_callback_error_param(patched_server_module: types.ModuleType, api_client: httpx.AsyncClient):
    enable_login(patched_server_module, x_api())
    resp = await api_client.get("/api/auth/twitter/callback", params={"error": "access_denied"})
    assert resp.headers["location"] == "/?error=access_denied"


async def test_full_login_flow(patched_server_module: types.ModuleType, api_client: httpx.AsyncClient):
    server = patched_server_module
    enable_login(server, x_api())

    state = await start_login(api_client, "/launch")
    resp = await api_client.get("/api/auth/twitter/callback", params={"code": "abc", "state": state})
    assert resp.status_code == 302
    assert resp.headers["location"] == "/launch"
    assert api_client.cookies.get(SESSION_COOKIE)

    me = await api_client.get("/api/auth/user")
    assert me.status_code == 200
    body = me.json()
    assert body["twitterUsername"] == "gooddev"
    assert body["profileImageUrl"] == "https://pbs.twimg.com/p/abc_400x400.jpg"

    out = await api_client.get("/api/logout")
    assert out.status_code == 302
    assert not server.storage.sessions
    api_client.cookies.clear()
    assert (await api_client.get("/api/auth/user")).status_code == 401


async def test_token_exchange_failure(patched_server_module: types.ModuleType, api_client: httpx.AsyncClient):
    enable_login(patched_server_module, x_api(status=400))
    state = await start_login(api_client)
    resp = await api_client.get("/api/auth/twitter/callback", params={"code": "abc", "state": state})
    assert resp.headers["location"] == "/?error=token_exchange_failed"
    assert not patched_server_module.storage.users


async def test_user_requires_session(api_client: httpx.AsyncClient):
    resp = await api_client.get("/api/auth/user")
    assert resp.status_code == 401
    assert resp.json() == {"message": "Unauthorized"}
