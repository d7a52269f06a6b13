"""Google sign-in over OAuth 2.0, with the state kept in a signed session cookie."""

from __future__ import annotations

import hmac
import logging
import secrets
import threading
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx
from starlette.responses import PlainTextResponse, RedirectResponse, Response

from .config import Config
from .session import SessionError, get_session_store

logger = logging.getLogger(__name__)

PROVIDER_NAME = "google"
AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
DEFAULT_SCOPES = ("email",)
AUTH_SESSION_NAME = "_gothic_session"


class AuthError(Exception):
    """Raised when sign-in cannot be started or completed."""


@dataclass(frozen=True)
class AuthUser:
    """The identity returned by the provider after sign-in."""

    user_id: str
    email: str
    name: str = ""
    first_name: str = ""
    last_name: str = ""
    avatar_url: str = ""
    access_token: str = ""
    refresh_token: str = ""
    provider: str = PROVIDER_NAME


class GoogleProvider:
    """OAuth 2.0 authorization-code flow against Google."""

    name = PROVIDER_NAME

    def __init__(self, client_id: str, client_secret: str, callback_url: str) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.callback_url = callback_url
        self.scopes = DEFAULT_SCOPES

    def authorization_url(self, state: str) -> str:
        """Return the URL the browser is sent to for consent."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.callback_url,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    async def complete(self, code: str) -> AuthUser:
        """Exchange ``code`` for a token and fetch the user's profile."""
        async with httpx.AsyncClient() as client:
            try:
                token_response = await client.post(
                    TOKEN_URL,
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "redirect_uri": self.callback_url,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                    },
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as exc:
                raise AuthError(f"token exchange failed: {exc}") from exc
            if token_response.status_code != 200:
                raise AuthError(
                    f"token exchange failed with status {token_response.status_code}"
                )
            token = _json(token_response)
            access_token = token.get("access_token")
            if not isinstance(access_token, str) or not access_token:
                raise AuthError("token response holds no access token")

            try:
                profile_response = await client.get(
                    USERINFO_URL, params={"access_token": access_token}
                )
            except httpx.HTTPError as exc:
                raise AuthError(f"fetching user information failed: {exc}") from exc
            if profile_response.status_code != 200:
                raise AuthError(
                    f"{self.name} responded with a {profile_response.status_code} "
                    "trying to fetch user information"
                )
            profile = _json(profile_response)

        return AuthUser(
            user_id=str(profile.get("id", "")),
            email=str(profile.get("email", "")),
            name=str(profile.get("name", "")),
            first_name=str(profile.get("given_name", "")),
            last_name=str(profile.get("family_name", "")),
            avatar_url=str(profile.get("picture", "")),
            access_token=access_token,
            refresh_token=str(token.get("refresh_token", "")),
        )


def _json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise AuthError("provider returned malformed JSON") from exc
    if not isinstance(data, dict):
        raise AuthError("provider returned an unexpected document")
    return data


def callback_url(config: Config) -> str:
    """Return the OAuth redirect target for the configured environment."""
    if config.environment == "prod":
        return f"https://{config.server.host}/auth/callback?provider={PROVIDER_NAME}"
    return f"http://localhost:{config.server.port}/auth/callback?provider={PROVIDER_NAME}"


_provider: GoogleProvider | None = None
_provider_lock = threading.Lock()


def setup_auth(config: Config) -> None:
    """Configure the Google provider once; the session store must already exist."""
    global _provider
    with _provider_lock:
        if _provider is not None:
            return
        url = callback_url(config)
        get_session_store()
        logger.info("setting up authentication callbackURL=%s", url)
        _provider = GoogleProvider(
            config.auth.google_client_id, config.auth.google_client_secret, url
        )


def get_provider() -> GoogleProvider:
    """Return the configured provider."""
    if _provider is None:
        raise AuthError("authentication not set up")
    return _provider


def _check_provider_name(request: Any) -> None:
    name = request.query_params.get("provider", "")
    if not name:
        raise AuthError("you must select a provider")
    if name != PROVIDER_NAME:
        raise AuthError(f"no provider for {name} exists")


def begin_auth(request: Any) -> Response:
    """Start sign-in: remember a fresh state token and redirect to the provider."""
    try:
        _check_provider_name(request)
        provider = get_provider()
        store = get_session_store()
        state = secrets.token_urlsafe(64)
        auth_session = store.get(request, AUTH_SESSION_NAME)
        auth_session.values[PROVIDER_NAME] = state
        response = RedirectResponse(provider.authorization_url(state), status_code=307)
        store.save(response, auth_session)
    except (AuthError, SessionError) as exc:
        return PlainTextResponse(str(exc), status_code=400)
    return response


async def complete_user_auth(request: Any) -> AuthUser:
    """Finish sign-in from the provider's callback request and return the user."""
    _check_provider_name(request)
    provider = get_provider()
    try:
        auth_session = get_session_store().get(request, AUTH_SESSION_NAME)
    except SessionError as exc:
        raise AuthError(str(exc)) from exc
    expected = auth_session.values.get(PROVIDER_NAME)
    if not isinstance(expected, str):
        raise AuthError("could not find a matching session for this request")
    received = request.query_params.get("state", "")
    if not hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8")):
        raise AuthError("state token mismatch")
    code = request.query_params.get("code", "")
    if not code:
        raise AuthError("authorization code missing")
    auth_session.values.pop(PROVIDER_NAME, None)
    return await provider.complete(code)