from __future__ import annotations

import asyncio
import json

from engagement.models.activity import Action, ActivityEvent
from engagement.services.activity_recorder import ACTIVITY_KEY
from engagement.services.aggregator import (
    COURSE_VIEWS_ROLLUP_KEY,
    DAY_MS,
    RETENTION_DAYS,
    USER_ENGAGEMENT_ROLLUP_KEY,
    Aggregator,
    UserEngagement,
    rollup_date,
)
from engagement.services.kv_store import InMemoryKVStore, NullKVStore

# 2024-03-15T12:00:00Z
NOW = 1_710_504_000_000


def _event(store: InMemoryKVStore, user_id: str, course_id: str, action: str, ts: int) -> None:
    event = ActivityEvent.new(
        user_id=user_id, course_id=course_id, action=Action(action), timestamp=ts
    )
    asyncio.run(store.zadd(ACTIVITY_KEY, {event.to_member(): ts}))


def _members(store: InMemoryKVStore, key: str) -> list[dict]:
    return [json.loads(m) for m in asyncio.run(store.zrange(key, 0, -1))]


def test_rollup_date_is_utc() -> None:
    assert rollup_date(NOW) == "2024-03-15"
    assert rollup_date(0) == "1970-01-01"


def test_no_activity_writes_nothing(store: InMemoryKVStore) -> None:
    summary = asyncio.run(Aggregator(store).process_daily(NOW))
    assert summary.processed == 0
    assert summary.course_views == {}
    assert asyncio.run(store.scan_keys("analytics:daily:*")) == []


def test_folds_last_24_hours(store: InMemoryKVStore) -> None:
    _event(store, "u1", "bio101", "view", NOW - 1_000)
    _event(store, "u1", "bio101", "view", NOW - 2_000)
    _event(store, "u2", "bio101", "view", NOW - 3_000)
    _event(store, "u2", "chem101", "complete", NOW - 4_000)
    _event(store, "u3", "phys101", "interact", NOW - DAY_MS)
    # Outside the window.
    _event(store, "u4", "bio101", "view", NOW - DAY_MS - 1)

    summary = asyncio.run(Aggregator(store).process_daily(NOW))

    assert summary.processed == 5
    # Only "view" actions count toward course views.
    assert summary.course_views == {"bio101": 3}
    assert sorted(summary.user_engagement, key=lambda e: e.user_id) == [
        UserEngagement("u1", 1),
        UserEngagement("u2", 2),
        UserEngagement("u3", 1),
    ]


def test_writes_rollup_records_scored_by_run_time(store: InMemoryKVStore) -> None:
    _event(store, "u1", "bio101", "view", NOW - 1_000)
    _event(store, "u1", "chem101", "complete", NOW - 500)

    asyncio.run(Aggregator(store).process_daily(NOW))

    (course_views,) = _members(store, COURSE_VIEWS_ROLLUP_KEY)
    assert course_views["courseId"] == "bio101"
    assert course_views["views"] == 1
    assert course_views["date"] == "2024-03-15"
    (engagement,) = _members(store, USER_ENGAGEMENT_ROLLUP_KEY)
    assert engagement["userId"] == "u1"
    assert engagement["courseCount"] == 2
    member = asyncio.run(store.zrange(COURSE_VIEWS_ROLLUP_KEY, 0, -1))[0]
    assert asyncio.run(store.zscore(COURSE_VIEWS_ROLLUP_KEY, member)) == NOW


def test_repeated_runs_append(store: InMemoryKVStore) -> None:
    _event(store, "u1", "bio101", "view", NOW - 1_000)
    aggregator = Aggregator(store)

    asyncio.run(aggregator.process_daily(NOW))
    asyncio.run(aggregator.process_daily(NOW + 60_000))

    assert len(_members(store, COURSE_VIEWS_ROLLUP_KEY)) == 2
    assert len(_members(store, USER_ENGAGEMENT_ROLLUP_KEY)) == 2


def test_course_views_by_date_does_not_double_count(store: InMemoryKVStore) -> None:
    _event(store, "u1", "bio101", "view", NOW - 1_000)
    aggregator = Aggregator(store)
    asyncio.run(aggregator.process_daily(NOW))
    _event(store, "u2", "bio101", "view", NOW + 1_000)
    asyncio.run(aggregator.process_daily(NOW + 60_000))

    by_date = asyncio.run(aggregator.course_views_by_date(NOW - DAY_MS, NOW + DAY_MS))
    assert by_date == {"2024-03-15": {"bio101": 2}}


def test_daily_rollups_filters_by_window(store: InMemoryKVStore) -> None:
    _event(store, "u1", "bio101", "view", NOW - 1_000)
    aggregator = Aggregator(store)
    asyncio.run(aggregator.process_daily(NOW))

    assert len(asyncio.run(aggregator.daily_rollups("user_engagement", NOW, NOW))) == 1
    assert asyncio.run(aggregator.daily_rollups("course_views", 0, NOW - 1)) == []


def test_prunes_events_past_retention(store: InMemoryKVStore) -> None:
    cutoff = NOW - RETENTION_DAYS * DAY_MS
    _event(store, "old", "bio101", "view", cutoff - 1)
    _event(store, "edge", "bio101", "view", cutoff)
    _event(store, "mid", "bio101", "view", NOW - 30 * DAY_MS)
    _event(store, "new", "bio101", "view", NOW - 1_000)

    asyncio.run(Aggregator(store).process_daily(NOW))

    remaining = {
        ActivityEvent.from_member(m).user_id
        for m in asyncio.run(store.zrangebyscore(ACTIVITY_KEY, "-inf", "+inf"))
    }
    assert remaining == {"mid", "new"}


def test_skips_malformed_members(store: InMemoryKVStore) -> None:
    asyncio.run(store.zadd(ACTIVITY_KEY, {"not json at all": NOW - 10}))
    asyncio.run(store.zadd(ACTIVITY_KEY, {'{"userId":"u9"}': NOW - 20}))
    _event(store, "u1", "bio101", "view", NOW - 1_000)

    summary = asyncio.run(Aggregator(store).process_daily(NOW))

    assert summary.course_views == {"bio101": 1}
    assert [e.user_id for e in summary.user_engagement] == ["u1"]


def test_uses_clock_when_now_omitted(store: InMemoryKVStore) -> None:
    _event(store, "u1", "bio101", "view", NOW - 1_000)
    summary = asyncio.run(Aggregator(store, clock=lambda: NOW).process_daily())
    assert summary.processed == 1


def test_degraded_store_yields_empty_summary() -> None:
    summary = asyncio.run(Aggregator(NullKVStore()).process_daily(NOW))
    assert summary.processed == 0
