"""Signed cookie sessions shared by the web handlers."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from .config import Config

SESSION_NAME = "gbzo-session"
DEFAULT_MAX_AGE = 86400 * 30  # 30 days

_CACHE_KEY = "garbanzo.sessions"


class SessionError(Exception):
    """Raised when a session cannot be read, decoded or saved."""


@dataclass
class Session:
    """A named bag of values carried in a signed cookie."""

    name: str
    values: dict[str, Any] = field(default_factory=dict)
    max_age: int = DEFAULT_MAX_AGE
    is_new: bool = True


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


class SessionStore:
    """Keeps session values in HMAC-signed, timestamped cookies."""

    path = "/"
    http_only = True
    secure = False
    same_site = "lax"

    def __init__(self, secret: str | bytes, max_age: int = DEFAULT_MAX_AGE) -> None:
        self._key = secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)
        self.max_age = max_age

    def _signature(self, name: str, payload: str) -> str:
        if not self._key:
            raise SessionError("hash key is not set")
        message = name.encode("utf-8") + b"|" + payload.encode("ascii")
        return _b64encode(hmac.new(self._key, message, hashlib.sha256).digest())

    def _encode(self, name: str, values: dict[str, Any]) -> str:
        try:
            body = json.dumps({"t": int(time.time()), "v": values}, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise SessionError(f"cannot encode session values: {exc}") from exc
        payload = _b64encode(body.encode("utf-8"))
        return f"{payload}.{self._signature(name, payload)}"

    def _decode(self, name: str, cookie: str) -> dict[str, Any]:
        payload, sep, signature = cookie.rpartition(".")
        if not sep or not payload:
            raise SessionError("malformed session cookie")
        try:
            expected = self._signature(name, payload)
        except UnicodeEncodeError as exc:
            raise SessionError("malformed session cookie") from exc
        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
            raise SessionError("the value is not valid")
        try:
            data = json.loads(_b64decode(payload))
        except (ValueError, binascii.Error) as exc:
            raise SessionError("malformed session cookie") from exc
        if not isinstance(data, dict):
            raise SessionError("malformed session cookie")
        stamp, values = data.get("t"), data.get("v")
        if not isinstance(stamp, int) or not isinstance(values, dict):
            raise SessionError("malformed session cookie")
        if self.max_age > 0 and stamp < time.time() - self.max_age:
            raise SessionError("expired timestamp")
        return values

    def get(self, request: Any, name: str) -> Session:
        """Return the named session for ``request``; the same object on repeated calls."""
        cache = request.scope.setdefault(_CACHE_KEY, {})
        if name in cache:
            return cache[name]
        session = Session(name=name, max_age=self.max_age)
        raw = request.cookies.get(name)
        if raw is not None:
            session.values = self._decode(name, raw)
            session.is_new = False
        cache[name] = session
        return session

    def save(self, response: Any, session: Session) -> None:
        """Write the session cookie to ``response``, deleting it when max_age is negative."""
        if session.max_age < 0:
            response.delete_cookie(
                session.name,
                path=self.path,
                secure=self.secure,
                httponly=self.http_only,
                samesite=self.same_site,
            )
            return
        response.set_cookie(
            session.name,
            self._encode(session.name, session.values),
            max_age=session.max_age or None,
            path=self.path,
            secure=self.secure,
            httponly=self.http_only,
            samesite=self.same_site,
        )


_store: SessionStore | None = None
_store_lock = threading.Lock()


def setup_session_store(config: Config) -> None:
    """Create the process-wide session store; later calls have no effect."""
    global _store
    with _store_lock:
        if _store is None:
            _store = SessionStore(config.auth.session_secret, DEFAULT_MAX_AGE)


def get_session_store() -> SessionStore:
    """Return the process-wide session store."""
    if _store is None:
        raise SessionError("session store not initialized")
    return _store


def get_session(request: Any) -> Session:
    """Return the application session for ``request``."""
    return get_session_store().get(request, SESSION_NAME)


def _value(request: Any, key: str, kind: type) -> Any:
    value = get_session(request).values.get(key)
    if not isinstance(value, kind) or isinstance(value, bool):
        raise SessionError(f"{key} not found in session")
    return value


def get_email(request: Any) -> str:
    """Return the e-mail address stored at login."""
    return _value(request, "email", str)


def get_auth_id(request: Any) -> str:
    """Return the identity-provider user id stored at login."""
    return _value(request, "authID", str)


def set_user_id(request: Any, response: Any, user_id: int) -> None:
    """Store the local user id and write the session to ``response``."""
    session = get_session(request)
    session.values["userID"] = user_id
    get_session_store().save(response, session)


def get_user_id(request: Any) -> int:
    """Return the local user id stored in the session."""
    return _value(request, "userID", int)


def logout(request: Any, response: Any) -> None:
    """Expire the application session cookie."""
    session = get_session(request)
    session.max_age = -1
    get_session_store().save(response, session)