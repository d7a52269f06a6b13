import json
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from garbanzo.database import Database
from garbanzo.models import Bean, Pod, PodMember, User
from garbanzo.queries import (
    CreateMessageRow,
    ListBeansForPodFullRow,
    ListMessagesInBeanRow,
    NoRowsError,
    Queries,
)

WHEN = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class FakeDB:
    def __init__(self, row=None, rows=()):
        self.row = row
        self.rows = list(rows)
        self.calls = []

    def query_row(self, sql, params=None):
        self.calls.append(("query_row", sql, dict(params or {})))
        return self.row

    def query(self, sql, params=None):
        self.calls.append(("query", sql, dict(params or {})))
        return self.rows

    def exec(self, sql, params=None):
        self.calls.append(("exec", sql, dict(params or {})))
        return 1


def user_row(**overrides):
    row = {
        "id": 3,
        "username": "alice",
        "email": "alice@example.com",
        "auth_id": "auth-1",
        "avatar_url": None,
        "created_at": WHEN,
        "user_color": "abcdef",
    }
    row.update(overrides)
    return row


def test_get_bean_maps_row_and_passes_id():
    db = FakeDB(row={"id": 7, "pod_id": 2, "name": "general", "created_at": WHEN})
    bean = Queries(db).get_bean(7)
    assert bean == Bean(id=7, pod_id=2, name="general", created_at=WHEN)
    kind, sql, params = db.calls[0]
    assert kind == "query_row"
    assert "FROM beans" in sql
    assert params == {"id": 7}


@pytest.mark.parametrize(
    "call",
    [
        lambda q: q.get_bean(1),
        lambda q: q.get_message("x"),
        lambda q: q.get_pod(1),
        lambda q: q.get_pod_by_invite_code("code"),
        lambda q: q.get_pod_member(1, 2),
        lambda q: q.get_user_by_auth_id("a"),
        lambda q: q.get_user_by_email("a@example.com"),
        lambda q: q.get_user_by_id(1),
        lambda q: q.update_bean("n", 1),
        lambda q: q.update_message("x", "c"),
        lambda q: q.update_pod("n", None, 1),
        lambda q: q.update_user("n", None, 1),
        lambda q: q.add_pod_member(1, 2),
        lambda q: q.create_bean(1, "n"),
        lambda q: q.create_message("x", 1, 2, "c"),
    ],
)
def test_single_row_queries_raise_when_missing(call):
    with pytest.raises(NoRowsError):
        call(Queries(FakeDB(row=None)))


@pytest.mark.parametrize("raw,expected", [(True, True), (False, False), (1, True), (0, False)])
def test_check_user_in_pod(raw, expected):
    db = FakeDB(row={"is_member": raw})
    assert Queries(db).check_user_in_pod(4, 9) is expected
    assert db.calls[0][2] == {"user_id": 4, "pod_id": 9}


def test_create_user_passes_every_field():
    db = FakeDB(row=user_row())
    user = Queries(db).create_user("alice", "alice@example.com", "auth-1", None, "abcdef")
    assert user == User(**user_row())
    assert db.calls[0][2] == {
        "username": "alice",
        "email": "alice@example.com",
        "auth_id": "auth-1",
        "avatar_url": None,
        "user_color": "abcdef",
    }
    assert "INSERT INTO users" in db.calls[0][1]


def test_create_message_returns_joined_author():
    row = {
        "id": "msg1",
        "bean_id": 5,
        "author_id": 3,
        "content": "hello",
        "created_at": WHEN,
        "updated_at": None,
        "author_username": "alice",
        "author_avatar_url": None,
        "author_user_color": "abcdef",
        "author_id_2": 3,
    }
    db = FakeDB(row=row)
    result = Queries(db).create_message("msg1", 5, 3, "hello")
    assert result == CreateMessageRow(**row)
    assert db.calls[0][2] == {"id": "msg1", "bean_id": 5, "author_id": 3, "content": "hello"}


def test_list_beans_for_pod_full_decodes_json_messages():
    messages = [{"id": "m1", "content": "hi", "author_id": 3}]
    db = FakeDB(
        rows=[
            {"id": 1, "name": "a", "pod_id": 2, "pod_name": "p", "messages": json.dumps(messages)},
            {"id": 2, "name": "b", "pod_id": 2, "pod_name": "p", "messages": messages},
            {"id": 3, "name": "c", "pod_id": 2, "pod_name": "p", "messages": None},
        ]
    )
    rows = Queries(db).list_beans_for_pod_full(2)
    assert rows[0] == ListBeansForPodFullRow(1, "a", 2, "p", messages)
    assert rows[1].messages == messages
    assert rows[2].messages == []
    assert db.calls[0][2] == {"pod_id": 2}


def test_list_messages_in_bean_parses_timestamps():
    db = FakeDB(
        rows=[
            {
                "id": "m1",
                "bean_id": 5,
                "author_id": 3,
                "content": "hi",
                "created_at": WHEN.isoformat(),
                "updated_at": None,
                "author_username": "alice",
                "author_id_2": 3,
            }
        ]
    )
    (row,) = Queries(db).list_messages_in_bean(5)
    assert isinstance(row, ListMessagesInBeanRow)
    assert row.created_at == WHEN
    assert "LIMIT 50" in db.calls[0][1]


@pytest.mark.parametrize(
    "method,arg",
    [
        ("list_beans_for_pod", 1),
        ("list_beans_for_pod_full", 1),
        ("list_messages_in_bean", 1),
        ("list_pod_members", 1),
        ("list_pods_for_user", 1),
    ],
)
def test_list_queries_return_empty_list(method, arg):
    assert getattr(Queries(FakeDB(rows=[])), method)(arg) == []


@pytest.mark.parametrize(
    "method,arg,table",
    [
        ("delete_bean", 1, "beans"),
        ("delete_message", "m1", "messages"),
        ("delete_pod", 2, "pods"),
        ("delete_user", 3, "users"),
    ],
)
def test_delete_queries_exec_with_id(method, arg, table):
    db = FakeDB()
    assert getattr(Queries(db), method)(arg) is None
    kind, sql, params = db.calls[0]
    assert kind == "exec"
    assert f"DELETE FROM {table}" in sql
    assert params == {"id": arg}


def test_remove_pod_member_params():
    db = FakeDB()
    Queries(db).remove_pod_member(4, 9)
    assert db.calls == [("exec", db.calls[0][1], {"user_id": 4, "pod_id": 9})]
    assert "DELETE FROM pod_members" in db.calls[0][1]


def test_with_tx_uses_the_given_db():
    outer = FakeDB()
    tx = FakeDB(row=user_row())
    q = Queries(outer).with_tx(tx)
    assert q.get_user_by_id(3).username == "alice"
    assert outer.calls == []
    assert len(tx.calls) == 1


@pytest.fixture
def sqlite_db():
    engine = create_engine(
        "sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    db = Database(engine)
    db.exec(
        "CREATE TABLE users (id INTEGER PRIMARY KEY, username TEXT, email TEXT,"
        " auth_id TEXT, avatar_url TEXT, created_at TEXT, user_color TEXT)"
    )
    db.exec(
        "CREATE TABLE pods (id INTEGER PRIMARY KEY, owner_id INTEGER, name TEXT,"
        " invite_code TEXT, created_at TEXT)"
    )
    db.exec(
        "CREATE TABLE beans (id INTEGER PRIMARY KEY, pod_id INTEGER, name TEXT, created_at TEXT)"
    )
    db.exec(
        "CREATE TABLE pod_members (id INTEGER PRIMARY KEY, user_id INTEGER,"
        " pod_id INTEGER, joined_at TEXT)"
    )
    stamp = "2024-01-02 03:04:05"
    db.exec(
        "INSERT INTO users VALUES (1, 'alice', 'alice@example.com', 'auth-1', NULL, :t, 'abcdef')",
        {"t": stamp},
    )
    db.exec("INSERT INTO pods VALUES (10, 1, 'home', 'invite', :t)", {"t": stamp})
    db.exec("INSERT INTO pods VALUES (11, 1, 'other', NULL, :t)", {"t": stamp})
    for bean_id, name in [(1, "zeta"), (2, "alpha"), (3, "mid")]:
        db.exec(
            "INSERT INTO beans VALUES (:id, 10, :name, :t)",
            {"id": bean_id, "name": name, "t": stamp},
        )
    db.exec("INSERT INTO pod_members VALUES (1, 1, 10, :t)", {"t": stamp})
    yield db
    db.close()


def test_sqlite_list_beans_ordered_by_name(sqlite_db):
    beans = Queries(sqlite_db).list_beans_for_pod(10)
    names = [b.name for b in beans]
    assert names == sorted(names)
    assert {b.id for b in beans} == {1, 2, 3}
    assert beans[0].created_at == datetime(2024, 1, 2, 3, 4, 5)


def test_sqlite_membership_queries(sqlite_db):
    q = Queries(sqlite_db)
    assert q.check_user_in_pod(1, 10) is True
    assert q.check_user_in_pod(1, 11) is False
    assert [p.id for p in q.list_pods_for_user(1)] == [10]
    member = q.get_pod_member(1, 10)
    assert isinstance(member, PodMember)
    assert (member.user_id, member.pod_id) == (1, 10)
    q.remove_pod_member(1, 10)
    assert q.check_user_in_pod(1, 10) is False
    with pytest.raises(NoRowsError):
        q.get_pod_member(1, 10)


def test_sqlite_pod_lookup_and_delete(sqlite_db):
    q = Queries(sqlite_db)
    pod = q.get_pod_by_invite_code("invite")
    assert isinstance(pod, Pod)
    assert (pod.id, pod.name) == (10, "home")
    assert q.get_pod(11).invite_code is None
    q.delete_bean(2)
    with pytest.raises(NoRowsError):
        q.get_bean(2)
    assert q.get_user_by_email("alice@example.com").auth_id == "auth-1"