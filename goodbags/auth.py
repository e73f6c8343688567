"""
Sign in with X (Twitter) using OAuth 2.0 authorization code + PKCE.

/api/login redirects to X with a fresh state and code challenge; the callback
checks the state, exchanges the code, fetches the profile, upserts the user and
sets the `goodbags.sid` session cookie. Sessions live in Storage.
"""

import base64
import hashlib
import secrets
import time
from typing import Dict, NamedTuple, Optional, Tuple
from urllib.parse import urlencode

import httpx
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from .config import Settings
from .errors import LoginError
from .models import User
from .storage import SESSION_TTL, Storage

logger = get_logger(__name__)

TWITTER_AUTH_URL = "https://x.com/i/oauth2/authorize"
TWITTER_TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
TWITTER_USER_URL = "https://api.twitter.com/2/users/me"
TWITTER_SCOPES = "tweet.read users.read offline.access"
CALLBACK_PATH = "/api/auth/twitter/callback"

SESSION_COOKIE = "goodbags.sid"
STATE_COOKIE = "goodbags.oauth_state"
PENDING_TTL_S = 10 * 60


class PendingLogin(NamedTuple):
    code_verifier: str
    return_to: str
    created_at: float


def generate_code_verifier() -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")


def code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def safe_return_path(value: Optional[str]) -> str:
    """Only same-site relative paths are allowed as redirect targets."""
    if value and value.startswith("/") and not value.startswith("//"):
        return value
    return "/"


def base_url(request: Request, force_https: bool = False) -> str:
    host = request.headers.get("host") or request.url.netloc
    secure = force_https or request.url.scheme == "https" or request.headers.get("x-forwarded-proto") == "https"
    return f"{'https' if secure else 'http'}://{host}"


class TwitterAuth:
    def __init__(self, settings: Settings, storage: Storage, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self.storage = storage
        self.client = http_client or httpx.AsyncClient(timeout=15.0)
        self.pending: Dict[str, PendingLogin] = {}

    async def close(self) -> None:
        await self.client.aclose()

    @property
    def configured(self) -> bool:
        return bool(self.settings.twitter_client_id and self.settings.twitter_client_secret)

    def _prune(self, now: float) -> None:
        expired = [s for s, p in self.pending.items() if now - p.created_at > PENDING_TTL_S]
        for state in expired:
            del self.pending[state]

    def authorize_url(self, request: Request, return_to: Optional[str] = None) -> Tuple[str, str]:
        """Starts a login. Returns (state, url to redirect the browser to)."""
        now = time.monotonic()
        self._prune(now)
        verifier = generate_code_verifier()
        state = secrets.token_hex(16)
        self.pending[state] = PendingLogin(verifier, safe_return_path(return_to), now)

        callback = base_url(request, self.settings.is_production) + CALLBACK_PATH
        params = {
            "response_type": "code",
            "client_id": self.settings.twitter_client_id,
            "redirect_uri": callback,
            "scope": TWITTER_SCOPES,
            "state": state,
            "code_challenge": code_challenge(verifier),
            "code_challenge_method": "S256",
        }
        return state, f"{TWITTER_AUTH_URL}?{urlencode(params)}"

    async def complete_login(self, request: Request, code: str, pending: PendingLogin) -> User:
        callback = base_url(request, self.settings.is_production) + CALLBACK_PATH
        token_resp = await self.client.post(
            TWITTER_TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": callback,
                "code_verifier": pending.code_verifier,
            },
            auth=(self.settings.twitter_client_id or "", self.settings.twitter_client_secret or ""),
        )
        if token_resp.status_code >= 400:
            raise LoginError("token_exchange_failed", f"{token_resp.status_code} {token_resp.text[:200]}")
        access_token = token_resp.json().get("access_token")

        user_resp = await self.client.get(
            TWITTER_USER_URL,
            params={"user.fields": "profile_image_url,name,username"},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if user_resp.status_code >= 400:
            raise LoginError("user_fetch_failed", f"{user_resp.status_code} {user_resp.text[:200]}")
        profile = user_resp.json().get("data") or {}
        if not profile.get("id") or not profile.get("username"):
            raise LoginError("user_fetch_failed", f"unexpected profile payload: {profile!r}")

        image = profile.get("profile_image_url")
        return self.storage.upsert_user(
            twitter_id=str(profile["id"]),
            twitter_username=profile["username"],
            twitter_display_name=profile.get("name"),
            profile_image_url=image.replace("_normal", "_400x400") if image else None,
        )

    def current_user(self, request: Request) -> Optional[User]:
        return self.storage.get_session_user(request.cookies.get(SESSION_COOKIE))

    def register_routes(self, mcp: FastMCP) -> None:
        auth = self

        @mcp.custom_route("/api/login", methods=["GET"])
        async def login(request: Request) -> Response:
            if not auth.configured:
                return JSONResponse({"error": "X login is not configured"}, status_code=503)
            state, url = auth.authorize_url(request, request.query_params.get("returnTo"))
            logger.info("Login initiated, redirecting to X")
            response = RedirectResponse(url, status_code=302)
            response.set_cookie(
                STATE_COOKIE, state, max_age=PENDING_TTL_S, httponly=True,
                secure=auth.settings.is_production, samesite="lax",
            )
            return response

        @mcp.custom_route(CALLBACK_PATH, methods=["GET"])
        async def twitter_callback(request: Request) -> Response:
            params = request.query_params
            if params.get("error"):
                logger.error(f"OAuth error: {params.get('error')} {params.get('error_description', '')}")
                return RedirectResponse(f"/?{urlencode({'error': params['error']})}", status_code=302)

            state = params.get("state")
            code = params.get("code")
            pending = auth.pending.pop(state, None) if state else None
            if not code or pending is None or request.cookies.get(STATE_COOKIE) != state:
                logger.error("State mismatch on X callback")
                return RedirectResponse("/?error=invalid_state", status_code=302)

            try:
                user = await auth.complete_login(request, code, pending)
            except LoginError as e:
                logger.error(f"X login failed: {e}")
                return RedirectResponse(f"/?error={e.reason}", status_code=302)
            except httpx.HTTPError as e:
                logger.error(f"X login failed: {e}")
                return RedirectResponse("/?error=callback_failed", status_code=302)

            session = auth.storage.create_session(user.id)
            logger.info(f"User @{user.twitter_username} logged in")
            response = RedirectResponse(pending.return_to, status_code=302)
            response.delete_cookie(STATE_COOKIE)
            response.set_cookie(
                SESSION_COOKIE, session.id, max_age=int(SESSION_TTL.total_seconds()), httponly=True,
                secure=auth.settings.is_production, samesite="lax",
            )
            return response

        @mcp.custom_route("/api/logout", methods=["GET"])
        async def logout(request: Request) -> Response:
            session_id = request.cookies.get(SESSION_COOKIE)
            if session_id:
                auth.storage.delete_session(session_id)
            response = RedirectResponse(safe_return_path(request.query_params.get("returnTo")), status_code=302)
            response.delete_cookie(SESSION_COOKIE)
            return response

        @mcp.custom_route("/api/auth/user", methods=["GET"])
        async def auth_user(request: Request) -> Response:
            user = auth.current_user(request)
            if user is None:
                return JSONResponse({"message": "Unauthorized"}, status_code=401)
            return JSONResponse(user.to_api())
