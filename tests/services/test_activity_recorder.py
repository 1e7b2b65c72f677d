from __future__ import annotations

import asyncio
import json

from engagement.models.activity import Action, ActivityEvent
from engagement.services.activity_recorder import (
    ACTIVITY_KEY,
    VIEWED_HISTORY_LIMIT,
    ActivityRecorder,
    course_viewers_key,
    course_views_key,
    user_viewed_key,
)
from engagement.services.kv_store import InMemoryKVStore, NullKVStore
from tests.conftest import FakeClock


def _recorder(store, clock: FakeClock | None = None) -> ActivityRecorder:
    return ActivityRecorder(store, clock=clock or FakeClock())


# ---- record_view ----


def test_record_view_updates_all_three_indexes(store: InMemoryKVStore) -> None:
    recorder = _recorder(store)
    assert asyncio.run(recorder.record_view("u1", "bio101")) is True

    assert asyncio.run(store.zrange(user_viewed_key("u1"), 0, -1)) == ["bio101"]
    assert asyncio.run(store.zscore(course_viewers_key("bio101"), "u1")) == 1.0
    assert asyncio.run(store.get(course_views_key("bio101"))) == "1"


def test_repeat_views_bump_weight_and_counter(store: InMemoryKVStore) -> None:
    recorder = _recorder(store)
    for _ in range(3):
        asyncio.run(recorder.record_view("u1", "bio101"))

    # One entry in the recency set, but every view counts elsewhere.
    assert asyncio.run(store.zrange(user_viewed_key("u1"), 0, -1)) == ["bio101"]
    assert asyncio.run(store.zscore(course_viewers_key("bio101"), "u1")) == 3.0
    assert asyncio.run(recorder.view_count("bio101")) == 3


def test_record_view_catalogs_title_when_given(store: InMemoryKVStore) -> None:
    recorder = _recorder(store)
    asyncio.run(recorder.record_view("u1", "bio101", "Biology"))
    asyncio.run(recorder.record_view("u1", "chem101"))

    titles = asyncio.run(recorder.course_titles(["bio101", "chem101", "never"]))

    assert titles == {"bio101": "Biology"}


def test_latest_title_wins(store: InMemoryKVStore) -> None:
    recorder = _recorder(store)
    asyncio.run(recorder.record_view("u1", "bio101", "Biology"))
    asyncio.run(recorder.record_view("u2", "bio101", "Biology I"))

    assert asyncio.run(recorder.course_titles(["bio101"])) == {"bio101": "Biology I"}


def test_recently_viewed_is_most_recent_first(store: InMemoryKVStore) -> None:
    recorder = _recorder(store)
    for course_id in ("a", "b", "c", "a"):
        asyncio.run(recorder.record_view("u1", course_id))
    assert asyncio.run(recorder.recently_viewed("u1")) == ["a", "c", "b"]


def test_recency_set_is_capped_at_limit(store: InMemoryKVStore) -> None:
    recorder = _recorder(store)
    for i in range(VIEWED_HISTORY_LIMIT + 5):
        asyncio.run(recorder.record_view("u1", f"course-{i:02d}"))

    viewed = asyncio.run(recorder.recently_viewed("u1"))
    assert len(viewed) == VIEWED_HISTORY_LIMIT
    # The five oldest were evicted; the newest is first.
    assert viewed[0] == f"course-{VIEWED_HISTORY_LIMIT + 4:02d}"
    assert "course-00" not in viewed
    assert "course-04" not in viewed
    assert "course-05" in viewed


def test_evicted_course_keeps_viewer_weight_and_counter(
    store: InMemoryKVStore,
) -> None:
    recorder = _recorder(store)
    asyncio.run(recorder.record_view("u1", "old"))
    for i in range(VIEWED_HISTORY_LIMIT):
        asyncio.run(recorder.record_view("u1", f"new-{i}"))

    assert "old" not in asyncio.run(recorder.recently_viewed("u1"))
    assert asyncio.run(store.zscore(course_viewers_key("old"), "u1")) == 1.0
    assert asyncio.run(recorder.view_count("old")) == 1


def test_record_view_reports_failure_on_degraded_store() -> None:
    recorder = _recorder(NullKVStore())
    assert asyncio.run(recorder.record_view("u1", "bio101")) is False


# ---- record_activity ----


def test_record_activity_appends_event(store: InMemoryKVStore) -> None:
    clock = FakeClock(start=1_000)
    recorder = _recorder(store, clock)
    assert asyncio.run(recorder.record_activity("u1", "bio101", Action.COMPLETE)) is True

    (member,) = asyncio.run(store.zrange(ACTIVITY_KEY, 0, -1))
    event = ActivityEvent.from_member(member)
    assert event.user_id == "u1"
    assert event.course_id == "bio101"
    assert event.action is Action.COMPLETE
    assert event.timestamp == 1_001
    assert asyncio.run(store.zscore(ACTIVITY_KEY, member)) == 1_001


def test_identical_events_are_counted_separately(store: InMemoryKVStore) -> None:
    # Same user, course, action and millisecond.
    recorder = ActivityRecorder(store, clock=lambda: 5_000)
    asyncio.run(recorder.record_activity("u1", "bio101", Action.VIEW))
    asyncio.run(recorder.record_activity("u1", "bio101", Action.VIEW))
    assert len(asyncio.run(store.zrange(ACTIVITY_KEY, 0, -1))) == 2


def test_record_activity_accepts_plain_strings(store: InMemoryKVStore) -> None:
    recorder = _recorder(store)
    assert asyncio.run(recorder.record_activity("u1", "bio101", "interact")) is True
    (member,) = asyncio.run(store.zrange(ACTIVITY_KEY, 0, -1))
    assert json.loads(member)["action"] == "interact"


def test_record_activity_reports_failure_on_degraded_store() -> None:
    recorder = _recorder(NullKVStore())
    assert asyncio.run(recorder.record_activity("u1", "bio101", Action.VIEW)) is False


# ---- view_count ----


def test_view_count_defaults_to_zero(store: InMemoryKVStore) -> None:
    assert asyncio.run(_recorder(store).view_count("never-viewed")) == 0


def test_view_count_tolerates_garbage(store: InMemoryKVStore) -> None:
    asyncio.run(store.set(course_views_key("bio101"), "lots"))
    assert asyncio.run(_recorder(store).view_count("bio101")) == 0
