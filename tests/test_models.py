from datetime import datetime, timezone

import pytest

from garbanzo.models import Bean, Message, Pod, PodMember, User

NOW = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


def test_bean_from_mapping():
    bean = Bean.from_row({"id": 1, "pod_id": 2, "name": "general", "created_at": NOW})
    assert bean == Bean(id=1, pod_id=2, name="general", created_at=NOW)


def test_bean_from_sequence():
    bean = Bean.from_row((1, 2, "general", NOW))
    assert bean.name == "general"
    assert bean.pod_id == 2


def test_wrong_column_count_raises():
    with pytest.raises(ValueError):
        Bean.from_row((1, 2, "general"))


def test_missing_key_raises():
    with pytest.raises(KeyError):
        PodMember.from_row({"id": 1, "user_id": 2, "pod_id": 3})


def test_message_with_null_update():
    row = {
        "id": "abc",
        "bean_id": 3,
        "author_id": 4,
        "content": "hello",
        "created_at": NOW,
        "updated_at": None,
    }
    message = Message.from_row(row)
    assert message.updated_at is None
    assert message.content == "hello"


def test_text_timestamps_are_parsed():
    member = PodMember.from_row((1, 2, 3, NOW.isoformat()))
    assert member.joined_at == NOW


def test_pod_and_user_rows():
    pod = Pod.from_row((5, 6, "friends", None, NOW))
    assert pod.invite_code is None
    assert pod.owner_id == 6
    user = User.from_row(
        {
            "id": 9,
            "username": "bob",
            "email": "bob@example.com",
            "auth_id": "auth-9",
            "avatar_url": None,
            "created_at": NOW,
            "user_color": "00ff00",
            "extra": "ignored",
        }
    )
    assert user.email == "bob@example.com"
    assert user.user_color == "00ff00"