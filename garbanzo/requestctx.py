"""Per-request values carried in an immutable context mapping."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

_USER_ID_KEY = "userID"
_AUTH_ID_KEY = "authID"


def _with(ctx: Mapping[str, Any], key: str, value: Any) -> Mapping[str, Any]:
    return MappingProxyType({**ctx, key: value})


def get_user_id(ctx: Mapping[str, Any]) -> int | None:
    """Return the user id stored in ``ctx``, or None if absent or not an int."""
    value = ctx.get(_USER_ID_KEY)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def set_user_id(ctx: Mapping[str, Any], user_id: int) -> Mapping[str, Any]:
    """Return a new context holding ``user_id``."""
    return _with(ctx, _USER_ID_KEY, user_id)


def get_auth_id(ctx: Mapping[str, Any]) -> str | None:
    """Return the auth id stored in ``ctx``, or None if absent or not a string."""
    value = ctx.get(_AUTH_ID_KEY)
    return value if isinstance(value, str) else None


def set_auth_id(ctx: Mapping[str, Any], auth_id: str) -> Mapping[str, Any]:
    """Return a new context holding ``auth_id``."""
    return _with(ctx, _AUTH_ID_KEY, auth_id)