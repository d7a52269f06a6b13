"""Row types for the chat database tables."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any

_DATETIME_FIELDS = frozenset({"created_at", "updated_at", "joined_at"})


def _coerce(name: str, value: Any) -> Any:
    if name in _DATETIME_FIELDS and isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


def _build(cls, row):
    names = [f.name for f in fields(cls)]
    if isinstance(row, Mapping):
        values = {name: row[name] for name in names}
    else:
        items = tuple(row)
        if len(items) != len(names):
            raise ValueError(
                f"{cls.__name__} expects {len(names)} columns, got {len(items)}"
            )
        values = dict(zip(names, items))
    return cls(**{name: _coerce(name, value) for name, value in values.items()})


@dataclass
class Bean:
    """A channel inside a pod."""

    id: int
    pod_id: int
    name: str
    created_at: datetime

    @classmethod
    def from_row(cls, row):
        """Build a bean from a mapping keyed by column name or a positional row."""
        return _build(cls, row)


@dataclass
class Message:
    """A chat message posted in a bean."""

    id: str
    bean_id: int
    author_id: int
    content: str
    created_at: datetime
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row):
        """Build a message from a mapping keyed by column name or a positional row."""
        return _build(cls, row)


@dataclass
class Pod:
    """A group of beans with its members."""

    id: int
    owner_id: int
    name: str
    invite_code: str | None
    created_at: datetime

    @classmethod
    def from_row(cls, row):
        """Build a pod from a mapping keyed by column name or a positional row."""
        return _build(cls, row)


@dataclass
class PodMember:
    """Membership of a user in a pod."""

    id: int
    user_id: int
    pod_id: int
    joined_at: datetime

    @classmethod
    def from_row(cls, row):
        """Build a membership from a mapping keyed by column name or a positional row."""
        return _build(cls, row)


@dataclass
class User:
    """A registered user."""

    id: int
    username: str
    email: str
    auth_id: str
    avatar_url: str | None
    created_at: datetime
    user_color: str

    @classmethod
    def from_row(cls, row):
        """Build a user from a mapping keyed by column name or a positional row."""
        return _build(cls, row)