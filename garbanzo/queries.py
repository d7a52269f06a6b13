"""Typed queries over the chat database."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, TypeVar

from .database import Database
from .models import Bean, Message, Pod, PodMember, User

T = TypeVar("T")


class NoRowsError(LookupError):
    """Raised when a query that expects one row finds none."""


@dataclass
class CreateMessageRow:
    """A newly stored message joined with its author's details."""

    id: str
    bean_id: int
    author_id: int
    content: str
    created_at: datetime
    updated_at: datetime | None
    author_username: str
    author_avatar_url: str | None
    author_user_color: str
    author_id_2: int


@dataclass
class ListBeansForPodFullRow:
    """A bean with its pod name and every message in it, oldest first."""

    id: int
    name: str
    pod_id: int
    pod_name: str
    messages: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ListMessagesInBeanRow:
    """A message joined with its author's username."""

    id: str
    bean_id: int
    author_id: int
    content: str
    created_at: datetime
    updated_at: datetime | None
    author_username: str
    author_id_2: int


_DATETIME_FIELDS = frozenset({"created_at", "updated_at"})


def _coerce(name: str, value: Any) -> Any:
    if name in _DATETIME_FIELDS and isinstance(value, str):
        return datetime.fromisoformat(value)
    if name == "messages":
        if value is None:
            return []
        if isinstance(value, (str, bytes, bytearray)):
            return json.loads(value)
        return list(value)
    return value


def _build(cls: type[T], row: Mapping[str, Any]) -> T:
    return cls(**{f.name: _coerce(f.name, row[f.name]) for f in fields(cls)})


_ADD_POD_MEMBER = """
INSERT INTO pod_members (user_id, pod_id)
VALUES (:user_id, :pod_id)
RETURNING id, user_id, pod_id, joined_at
"""

_CHECK_USER_IN_POD = """
SELECT EXISTS (
  SELECT 1 FROM pod_members
  WHERE user_id = :user_id AND pod_id = :pod_id
) AS is_member
"""

_CREATE_BEAN = """
INSERT INTO beans (pod_id, name)
VALUES (:pod_id, :name)
RETURNING id, pod_id, name, created_at
"""

_CREATE_MESSAGE = """
WITH new_message AS (
  INSERT INTO messages (id, bean_id, author_id, content)
  VALUES (:id, :bean_id, :author_id, :content)
  RETURNING id, bean_id, author_id, content, created_at, updated_at
)
SELECT
  m.id, m.bean_id, m.author_id, m.content, m.created_at, m.updated_at,
  u.username AS author_username,
  u.avatar_url AS author_avatar_url,
  u.user_color AS author_user_color,
  u.id AS author_id_2
FROM new_message m
JOIN users u ON m.author_id = u.id
"""

_CREATE_POD = """
INSERT INTO pods (owner_id, name, invite_code)
VALUES (:owner_id, :name, :invite_code)
RETURNING id, owner_id, name, invite_code, created_at
"""

_CREATE_USER = """
INSERT INTO users (username, email, auth_id, avatar_url, user_color)
VALUES (:username, :email, :auth_id, :avatar_url, :user_color)
RETURNING id, username, email, auth_id, avatar_url, created_at, user_color
"""

_DELETE_BEAN = "DELETE FROM beans WHERE id = :id"
_DELETE_MESSAGE = "DELETE FROM messages WHERE id = :id"
_DELETE_POD = "DELETE FROM pods WHERE id = :id"
_DELETE_USER = "DELETE FROM users WHERE id = :id"

_GET_BEAN = """
SELECT id, pod_id, name, created_at FROM beans
WHERE id = :id LIMIT 1
"""

_GET_MESSAGE = """
SELECT id, bean_id, author_id, content, created_at, updated_at FROM messages
WHERE id = :id LIMIT 1
"""

_GET_POD = """
SELECT id, owner_id, name, invite_code, created_at FROM pods
WHERE id = :id LIMIT 1
"""

_GET_POD_BY_INVITE_CODE = """
SELECT id, owner_id, name, invite_code, created_at FROM pods
WHERE invite_code = :invite_code LIMIT 1
"""

_GET_POD_MEMBER = """
SELECT id, user_id, pod_id, joined_at FROM pod_members
WHERE user_id = :user_id AND pod_id = :pod_id
"""

_USER_COLUMNS = "id, username, email, auth_id, avatar_url, created_at, user_color"

_GET_USER_BY_AUTH_ID = f"SELECT {_USER_COLUMNS} FROM users WHERE auth_id = :auth_id LIMIT 1"
_GET_USER_BY_EMAIL = f"SELECT {_USER_COLUMNS} FROM users WHERE email = :email LIMIT 1"
_GET_USER_BY_ID = f"SELECT {_USER_COLUMNS} FROM users WHERE id = :id LIMIT 1"

_LIST_BEANS_FOR_POD = """
SELECT id, pod_id, name, created_at FROM beans
WHERE pod_id = :pod_id
ORDER BY name
"""

_LIST_BEANS_FOR_POD_FULL = """
SELECT
    b.id,
    b.name,
    p.id AS pod_id,
    p.name AS pod_name,
    COALESCE(jsonb_agg(
        json_build_object(
            'id', m.id,
            'content', m.content,
            'created_at', m.created_at,
            'author_id', u.id,
            'author_username', u.username,
            'author_avatar_url', u.avatar_url,
            'author_user_color', u.user_color
        ) ORDER BY m.created_at ASC
    ) FILTER (WHERE m.id IS NOT NULL), CAST('[]' AS jsonb)) AS messages
FROM beans b
JOIN pods p ON b.pod_id = p.id
LEFT JOIN messages m ON m.bean_id = b.id
LEFT JOIN users u ON m.author_id = u.id
WHERE b.pod_id = :pod_id
GROUP BY b.id, p.id, p.name
ORDER BY b.name
"""

_LIST_MESSAGES_IN_BEAN = """
SELECT m.id, m.bean_id, m.author_id, m.content, m.created_at, m.updated_at,
  u.username AS author_username, u.id AS author_id_2
FROM messages m
JOIN users u ON m.author_id = u.id
WHERE bean_id = :bean_id
ORDER BY m.created_at
LIMIT 50
"""

_LIST_POD_MEMBERS = """
SELECT id, user_id, pod_id, joined_at FROM pod_members
WHERE pod_id = :pod_id
"""

_LIST_PODS_FOR_USER = """
SELECT p.id, p.owner_id, p.name, p.invite_code, p.created_at FROM pods p
JOIN pod_members pm ON p.id = pm.pod_id
WHERE pm.user_id = :user_id
"""

_REMOVE_POD_MEMBER = """
DELETE FROM pod_members
WHERE user_id = :user_id AND pod_id = :pod_id
"""

_UPDATE_BEAN = """
UPDATE beans
SET name = :name
WHERE id = :id
RETURNING id, pod_id, name, created_at
"""

_UPDATE_MESSAGE = """
UPDATE messages
SET content = :content, updated_at = now()
WHERE id = :id
RETURNING id, bean_id, author_id, content, created_at, updated_at
"""

_UPDATE_POD = """
UPDATE pods
SET name = :name, invite_code = :invite_code
WHERE id = :id
RETURNING id, owner_id, name, invite_code, created_at
"""

_UPDATE_USER = f"""
UPDATE users
SET username = :username, avatar_url = :avatar_url
WHERE id = :id
RETURNING {_USER_COLUMNS}
"""


class Queries:
    """Every query the application runs, returning typed rows.

    ``db`` is anything with ``query_row``, ``query`` and ``exec`` methods,
    such as a :class:`Database`.
    """

    def __init__(self, db: Any) -> None:
        self._db = db

    def with_tx(self, tx: Any) -> Queries:
        """Return a Queries bound to ``tx``: a database object or a SQLAlchemy connection."""
        if all(hasattr(tx, name) for name in ("query_row", "query", "exec")):
            return Queries(tx)
        return Queries(Database(tx))

    def _one(self, sql: str, params: Mapping[str, Any]) -> dict[str, Any]:
        row = self._db.query_row(sql, params)
        if row is None:
            raise NoRowsError("no rows in result set")
        return row

    def _many(self, sql: str, params: Mapping[str, Any]) -> list[dict[str, Any]]:
        return list(self._db.query(sql, params))

    # Pod members

    def add_pod_member(self, user_id: int, pod_id: int) -> PodMember:
        return PodMember.from_row(
            self._one(_ADD_POD_MEMBER, {"user_id": user_id, "pod_id": pod_id})
        )

    def check_user_in_pod(self, user_id: int, pod_id: int) -> bool:
        row = self._one(_CHECK_USER_IN_POD, {"user_id": user_id, "pod_id": pod_id})
        return bool(row["is_member"])

    def get_pod_member(self, user_id: int, pod_id: int) -> PodMember:
        return PodMember.from_row(
            self._one(_GET_POD_MEMBER, {"user_id": user_id, "pod_id": pod_id})
        )

    def list_pod_members(self, pod_id: int) -> list[PodMember]:
        return [PodMember.from_row(r) for r in self._many(_LIST_POD_MEMBERS, {"pod_id": pod_id})]

    def remove_pod_member(self, user_id: int, pod_id: int) -> None:
        self._db.exec(_REMOVE_POD_MEMBER, {"user_id": user_id, "pod_id": pod_id})

    # Beans

    def create_bean(self, pod_id: int, name: str) -> Bean:
        return Bean.from_row(self._one(_CREATE_BEAN, {"pod_id": pod_id, "name": name}))

    def get_bean(self, id: int) -> Bean:
        return Bean.from_row(self._one(_GET_BEAN, {"id": id}))

    def update_bean(self, name: str, id: int) -> Bean:
        return Bean.from_row(self._one(_UPDATE_BEAN, {"name": name, "id": id}))

    def delete_bean(self, id: int) -> None:
        self._db.exec(_DELETE_BEAN, {"id": id})

    def list_beans_for_pod(self, pod_id: int) -> list[Bean]:
        return [Bean.from_row(r) for r in self._many(_LIST_BEANS_FOR_POD, {"pod_id": pod_id})]

    def list_beans_for_pod_full(self, pod_id: int) -> list[ListBeansForPodFullRow]:
        return [
            _build(ListBeansForPodFullRow, r)
            for r in self._many(_LIST_BEANS_FOR_POD_FULL, {"pod_id": pod_id})
        ]

    # Messages

    def create_message(
        self, id: str, bean_id: int, author_id: int, content: str
    ) -> CreateMessageRow:
        row = self._one(
            _CREATE_MESSAGE,
            {"id": id, "bean_id": bean_id, "author_id": author_id, "content": content},
        )
        return _build(CreateMessageRow, row)

    def get_message(self, id: str) -> Message:
        return Message.from_row(self._one(_GET_MESSAGE, {"id": id}))

    def update_message(self, id: str, content: str) -> Message:
        return Message.from_row(self._one(_UPDATE_MESSAGE, {"id": id, "content": content}))

    def delete_message(self, id: str) -> None:
        self._db.exec(_DELETE_MESSAGE, {"id": id})

    def list_messages_in_bean(self, bean_id: int) -> list[ListMessagesInBeanRow]:
        return [
            _build(ListMessagesInBeanRow, r)
            for r in self._many(_LIST_MESSAGES_IN_BEAN, {"bean_id": bean_id})
        ]

    # Pods

    def create_pod(self, owner_id: int, name: str, invite_code: str | None) -> Pod:
        return Pod.from_row(
            self._one(
                _CREATE_POD,
                {"owner_id": owner_id, "name": name, "invite_code": invite_code},
            )
        )

    def get_pod(self, id: int) -> Pod:
        return Pod.from_row(self._one(_GET_POD, {"id": id}))

    def get_pod_by_invite_code(self, invite_code: str | None) -> Pod:
        return Pod.from_row(self._one(_GET_POD_BY_INVITE_CODE, {"invite_code": invite_code}))

    def update_pod(self, name: str, invite_code: str | None, id: int) -> Pod:
        return Pod.from_row(
            self._one(_UPDATE_POD, {"name": name, "invite_code": invite_code, "id": id})
        )

    def delete_pod(self, id: int) -> None:
        self._db.exec(_DELETE_POD, {"id": id})

    def list_pods_for_user(self, user_id: int) -> list[Pod]:
        return [Pod.from_row(r) for r in self._many(_LIST_PODS_FOR_USER, {"user_id": user_id})]

    # Users

    def create_user(
        self,
        username: str,
        email: str,
        auth_id: str,
        avatar_url: str | None,
        user_color: str,
    ) -> User:
        return User.from_row(
            self._one(
                _CREATE_USER,
                {
                    "username": username,
                    "email": email,
                    "auth_id": auth_id,
                    "avatar_url": avatar_url,
                    "user_color": user_color,
                },
            )
        )

    def get_user_by_auth_id(self, auth_id: str) -> User:
        return User.from_row(self._one(_GET_USER_BY_AUTH_ID, {"auth_id": auth_id}))

    def get_user_by_email(self, email: str) -> User:
        return User.from_row(self._one(_GET_USER_BY_EMAIL, {"email": email}))

    def get_user_by_id(self, id: int) -> User:
        return User.from_row(self._one(_GET_USER_BY_ID, {"id": id}))

    def update_user(self, username: str, avatar_url: str | None, id: int) -> User:
        return User.from_row(
            self._one(_UPDATE_USER, {"username": username, "avatar_url": avatar_url, "id": id})
        )

    def delete_user(self, id: int) -> None:
        self._db.exec(_DELETE_USER, {"id": id})