from __future__ import annotations

import asyncio
import re

import pytest

from engagement.models.notification import NotificationType
from engagement.services.kv_store import InMemoryKVStore, NullKVStore
from engagement.services.mailbox import (
    Mailbox,
    new_notification_id,
    notification_key,
    unread_counter_key,
)
from tests.conftest import FakeClock


@pytest.fixture
def mailbox(store: InMemoryKVStore) -> Mailbox:
    return Mailbox(store, clock=FakeClock())


def _add(mailbox: Mailbox, user_id: str = "u1", title: str = "Hello") -> str:
    return asyncio.run(
        mailbox.add(user_id, NotificationType.REMINDER, title, "Continue course")
    )


def test_notification_id_shape() -> None:
    notification_id = new_notification_id(1_700_000_000_000)
    assert re.fullmatch(r"1700000000000-[0-9a-z]{7}", notification_id)


def test_add_then_mark_read_twice(mailbox: Mailbox) -> None:
    notification_id = _add(mailbox)
    assert asyncio.run(mailbox.unread_count("u1")) == 1

    assert asyncio.run(mailbox.mark_read("u1", notification_id)) is True
    assert asyncio.run(mailbox.unread_count("u1")) == 0

    # Second call is a no-op, not a second decrement.
    assert asyncio.run(mailbox.mark_read("u1", notification_id)) is True
    assert asyncio.run(mailbox.unread_count("u1")) == 0


@pytest.mark.parametrize("added,read", [(1, 0), (3, 1), (5, 5), (4, 2)])
def test_unread_count_is_added_minus_read(mailbox: Mailbox, added: int, read: int) -> None:
    ids = [_add(mailbox, title=f"n{i}") for i in range(added)]
    for notification_id in ids[:read]:
        asyncio.run(mailbox.mark_read("u1", notification_id))
    assert asyncio.run(mailbox.unread_count("u1")) == added - read


def test_add_stores_record(mailbox: Mailbox, store: InMemoryKVStore) -> None:
    notification_id = asyncio.run(
        mailbox.add("u1", "achievement", "Badge earned", "Nice work", link="/badges")
    )
    record = asyncio.run(store.hgetall(notification_key(notification_id)))
    assert record["userId"] == "u1"
    assert record["type"] == "achievement"
    assert record["read"] == "false"
    assert record["link"] == "/badges"


def test_add_rejects_unknown_type(mailbox: Mailbox) -> None:
    with pytest.raises(ValueError):
        asyncio.run(mailbox.add("u1", "spam", "t", "m"))


def test_list_is_newest_first_and_paginated(mailbox: Mailbox) -> None:
    for i in range(5):
        _add(mailbox, title=f"n{i}")

    first_page = asyncio.run(mailbox.list("u1", limit=2))
    assert [n.title for n in first_page] == ["n4", "n3"]
    second_page = asyncio.run(mailbox.list("u1", limit=2, offset=2))
    assert [n.title for n in second_page] == ["n2", "n1"]
    assert [n.title for n in asyncio.run(mailbox.list("u1", limit=10, offset=4))] == ["n0"]
    assert asyncio.run(mailbox.list("u1", limit=0)) == []


def test_list_reflects_read_state(mailbox: Mailbox) -> None:
    notification_id = _add(mailbox)
    asyncio.run(mailbox.mark_read("u1", notification_id))
    (notification,) = asyncio.run(mailbox.list("u1"))
    assert notification.read is True
    assert notification.type is NotificationType.REMINDER


def test_list_skips_ids_without_record(mailbox: Mailbox, store: InMemoryKVStore) -> None:
    kept = _add(mailbox, title="kept")
    gone = _add(mailbox, title="gone")
    key = notification_key(gone)
    asyncio.run(store.hdel(key, *asyncio.run(store.hgetall(key))))
    assert [n.id for n in asyncio.run(mailbox.list("u1"))] == [kept]


def test_mark_read_of_unknown_id_is_false(mailbox: Mailbox) -> None:
    assert asyncio.run(mailbox.mark_read("u1", "nope")) is False


def test_mark_read_of_another_users_notification_is_false(mailbox: Mailbox) -> None:
    notification_id = _add(mailbox, user_id="owner")
    assert asyncio.run(mailbox.mark_read("intruder", notification_id)) is False
    assert asyncio.run(mailbox.unread_count("owner")) == 1


def test_mark_read_never_drives_counter_negative(
    mailbox: Mailbox, store: InMemoryKVStore
) -> None:
    notification_id = _add(mailbox)
    # Simulate drift: the counter already reached 0.
    asyncio.run(store.set(unread_counter_key("u1"), 0))
    assert asyncio.run(mailbox.mark_read("u1", notification_id)) is True
    assert asyncio.run(store.get(unread_counter_key("u1"))) == "0"


def test_mark_all_read_twice(mailbox: Mailbox) -> None:
    for i in range(3):
        _add(mailbox, title=f"n{i}")

    for _ in range(2):
        assert asyncio.run(mailbox.mark_all_read("u1")) is True
        assert asyncio.run(mailbox.unread_count("u1")) == 0
        assert all(n.read for n in asyncio.run(mailbox.list("u1")))


def test_mark_all_read_repairs_drift(mailbox: Mailbox, store: InMemoryKVStore) -> None:
    _add(mailbox)
    asyncio.run(store.set(unread_counter_key("u1"), 42))
    asyncio.run(mailbox.mark_all_read("u1"))
    assert asyncio.run(mailbox.unread_count("u1")) == 0


def test_mark_all_read_on_empty_mailbox(mailbox: Mailbox) -> None:
    assert asyncio.run(mailbox.mark_all_read("nobody")) is True
    assert asyncio.run(mailbox.unread_count("nobody")) == 0


def test_broadcast_adds_one_per_user(mailbox: Mailbox) -> None:
    ids = asyncio.run(
        mailbox.broadcast(["a", "b", "c"], "announcement", "New course", "Check it out")
    )
    assert len(set(ids)) == 3
    for user_id in ("a", "b", "c"):
        assert asyncio.run(mailbox.unread_count(user_id)) == 1


def test_unread_count_clamps_negative_and_garbage(
    mailbox: Mailbox, store: InMemoryKVStore
) -> None:
    asyncio.run(store.set(unread_counter_key("u1"), -3))
    assert asyncio.run(mailbox.unread_count("u1")) == 0
    asyncio.run(store.set(unread_counter_key("u1"), "??"))
    assert asyncio.run(mailbox.unread_count("u1")) == 0


def test_degraded_store_looks_like_empty_mailbox() -> None:
    mailbox = Mailbox(NullKVStore())
    notification_id = _add(mailbox)
    assert notification_id
    assert asyncio.run(mailbox.list("u1")) == []
    assert asyncio.run(mailbox.unread_count("u1")) == 0
    assert asyncio.run(mailbox.mark_read("u1", notification_id)) is False
    assert asyncio.run(mailbox.mark_all_read("u1")) is False
