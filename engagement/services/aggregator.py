"""Daily analytics rollups over the raw activity time series.

process_daily is invoked once a day by the external scheduler hitting
POST /v1/analytics/process-daily; there is no timer loop in-process.

ROLLUPS APPEND, THEY DO NOT UPSERT
------------------------------------
Each run writes one record per course and one per user into
analytics:daily:course_views / analytics:daily:user_engagement, scored by
the run time.  Running twice on the same day writes two records for that
date.  Readers that need an authoritative per-day figure must group by
date themselves; course_views_by_date does that for course views.

A run is not transactional.  If the store fails halfway through, the
rollups already written stay written and the failure is in the logs.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from engagement.core.metrics import ROLLUP_EVENTS_PROCESSED
from engagement.models.activity import Action, ActivityEvent
from engagement.services.activity_recorder import ACTIVITY_KEY, now_ms
from engagement.services.kv_store import KVStore, kv_store

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
RETENTION_DAYS = 90

COURSE_VIEWS_ROLLUP_KEY = "analytics:daily:course_views"
USER_ENGAGEMENT_ROLLUP_KEY = "analytics:daily:user_engagement"

RollupKind = Literal["course_views", "user_engagement"]

_ROLLUP_KEYS: dict[str, str] = {
    "course_views": COURSE_VIEWS_ROLLUP_KEY,
    "user_engagement": USER_ENGAGEMENT_ROLLUP_KEY,
}


@dataclass(frozen=True, slots=True)
class UserEngagement:
    user_id: str
    course_count: int


@dataclass(frozen=True, slots=True)
class DailySummary:
    processed: int
    course_views: dict[str, int] = field(default_factory=dict)
    user_engagement: list[UserEngagement] = field(default_factory=list)


def rollup_date(timestamp_ms: int) -> str:
    """YYYY-MM-DD in UTC for an epoch-millisecond timestamp."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date().isoformat()


class Aggregator:
    def __init__(self, store: KVStore, *, clock: Callable[[], int] = now_ms) -> None:
        self._store = store
        self._clock = clock

    async def process_daily(self, now: int | None = None) -> DailySummary:
        now = self._clock() if now is None else now
        members = await self._store.zrangebyscore(ACTIVITY_KEY, now - DAY_MS, now)

        if not members:
            logger.info("No activity in the last 24h, nothing to roll up")
            return DailySummary(processed=0)

        course_views: dict[str, int] = {}
        engagement: dict[str, set[str]] = {}
        for member in members:
            try:
                event = ActivityEvent.from_member(member)
            except ValueError:
                logger.warning("Skipping malformed activity member %.80s", member)
                continue
            if event.action is Action.VIEW:
                course_views[event.course_id] = course_views.get(event.course_id, 0) + 1
            engagement.setdefault(event.user_id, set()).add(event.course_id)

        date = rollup_date(now)
        for course_id, views in course_views.items():
            await self._append_rollup(
                COURSE_VIEWS_ROLLUP_KEY,
                {"courseId": course_id, "views": views, "date": date},
                now,
            )
        for user_id, courses in engagement.items():
            await self._append_rollup(
                USER_ENGAGEMENT_ROLLUP_KEY,
                {"userId": user_id, "courseCount": len(courses), "date": date},
                now,
            )

        cutoff = now - RETENTION_DAYS * DAY_MS
        pruned = await self._store.zremrangebyscore(ACTIVITY_KEY, "-inf", cutoff)

        ROLLUP_EVENTS_PROCESSED.inc(len(members))
        logger.info(
            "Daily rollup for %s: %d events, %d courses, %d users, %d pruned",
            date,
            len(members),
            len(course_views),
            len(engagement),
            pruned,
        )
        return DailySummary(
            processed=len(members),
            course_views=course_views,
            user_engagement=[
                UserEngagement(user_id=user_id, course_count=len(courses))
                for user_id, courses in engagement.items()
            ],
        )

    async def _append_rollup(self, key: str, record: dict, score: int) -> None:
        # The run time is part of the member so that two runs on the same
        # day append two records instead of collapsing into one.
        member = json.dumps({**record, "recordedAt": score}, separators=(",", ":"))
        if await self._store.zadd(key, {member: score}) != 1:
            logger.warning("Failed to write rollup to %s: %s", key, member)

    async def daily_rollups(
        self, kind: RollupKind, since: int, until: int
    ) -> list[dict]:
        """Raw rollup records written in [since, until], oldest first."""
        rollups = []
        for member in await self._store.zrangebyscore(_ROLLUP_KEYS[kind], since, until):
            try:
                rollups.append(json.loads(member))
            except ValueError:
                logger.warning("Skipping malformed rollup member %.80s", member)
        return rollups

    async def course_views_by_date(self, since: int, until: int) -> dict[str, dict[str, int]]:
        """One figure per (date, course): the largest count any run recorded.

        Repeated runs on one day cover overlapping 24h windows, so adding
        them would double count.
        """
        totals: dict[str, dict[str, int]] = {}
        for record in await self.daily_rollups("course_views", since, until):
            per_day = totals.setdefault(record["date"], {})
            course_id = record["courseId"]
            per_day[course_id] = max(per_day.get(course_id, 0), int(record["views"]))
        return totals


aggregator = Aggregator(kv_store)
