"""Activity recorder: turns user interactions into store writes.

Two write paths with different readers:

  record_view      live indexes the recommender reads on every request
                     user:{u}:viewed       recency-ordered, capped at 20
                     course:{c}:viewers    who viewed it, with a weight
                     course:{c}:views      lifetime counter (popularity)
                     catalog:course_titles course id -> title, when a view
                                           carries one

  record_activity  the raw time series the daily aggregator folds in batch
                     analytics:activity    JSON events scored by timestamp

Both run on the product's request path, so they never raise.  A failed
write is logged and reported as False; the page view itself goes on.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from engagement.core.metrics import COURSE_VIEWS_RECORDED
from engagement.models.activity import Action, ActivityEvent
from engagement.services.kv_store import KVStore, kv_store

logger = logging.getLogger(__name__)

# How many distinct courses a user's recency set keeps.
VIEWED_HISTORY_LIMIT = 20

ACTIVITY_KEY = "analytics:activity"
COURSE_TITLES_KEY = "catalog:course_titles"


def user_viewed_key(user_id: str) -> str:
    return f"user:{user_id}:viewed"


def course_viewers_key(course_id: str) -> str:
    return f"course:{course_id}:viewers"


def course_views_key(course_id: str) -> str:
    return f"course:{course_id}:views"


def now_ms() -> int:
    return int(time.time() * 1000)


class ActivityRecorder:
    def __init__(
        self, store: KVStore, *, clock: Callable[[], int] = now_ms
    ) -> None:
        self._store = store
        self._clock = clock

    async def record_view(
        self, user_id: str, course_id: str, course_title: str | None = None
    ) -> bool:
        """Record that ``user_id`` looked at ``course_id``.

        Trimming uses ZREMRANGEBYRANK rather than read-then-rewrite, so two
        concurrent views by the same user cannot resurrect evicted entries.
        Returns False if any write failed.
        """
        viewed_key = user_viewed_key(user_id)

        await self._store.zadd(viewed_key, {course_id: self._clock()})
        # Keep ranks -20..-1 (the most recent), drop everything older.
        await self._store.zremrangebyrank(viewed_key, 0, -(VIEWED_HISTORY_LIMIT + 1))
        weight = await self._store.zincrby(course_viewers_key(course_id), 1, user_id)
        views = await self._store.incr(course_views_key(course_id))
        if course_title:
            await self._store.hset(COURSE_TITLES_KEY, {course_id: course_title})

        # Both counters are >= 1 after a successful increment; 0 is the
        # store's degraded answer.
        if weight <= 0 or views <= 0:
            logger.warning(
                "Failed to record course view course=%s",
                course_id,
                extra={"user_id": user_id},
            )
            return False

        COURSE_VIEWS_RECORDED.inc()
        return True

    async def record_activity(
        self, user_id: str, course_id: str, action: Action
    ) -> bool:
        """Append one ActivityEvent to the global time series.

        No debouncing: identical events recorded back to back are stored
        and counted separately.
        """
        event = ActivityEvent.new(
            user_id=user_id,
            course_id=course_id,
            action=Action(action),
            timestamp=self._clock(),
        )
        added = await self._store.zadd(ACTIVITY_KEY, {event.to_member(): event.timestamp})
        if added != 1:
            logger.warning(
                "Failed to record user activity action=%s course=%s",
                event.action.value,
                course_id,
                extra={"user_id": user_id},
            )
            return False
        return True

    async def view_count(self, course_id: str) -> int:
        raw = await self._store.get(course_views_key(course_id))
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            logger.warning("Non-integer view counter for course=%s: %r", course_id, raw)
            return 0

    async def recently_viewed(self, user_id: str) -> list[str]:
        """Courses the user viewed, most recent first."""
        return await self._store.zrange(user_viewed_key(user_id), 0, -1, rev=True)

    async def course_titles(self, course_ids: list[str]) -> dict[str, str]:
        """Known titles for ``course_ids``; ids never seen with a title are left out."""
        catalog = await self._store.hgetall(COURSE_TITLES_KEY)
        return {c: catalog[c] for c in course_ids if c in catalog}


activity_recorder = ActivityRecorder(kv_store)
