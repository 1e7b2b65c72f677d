"""Course recommendations by neighbour-weighted voting.

A minimal user-based collaborative filter over the recorder's indexes:

  1. viewed     = the user's recency set (may be empty: cold start)
  2. neighbours = other users who viewed the same courses, scored by
                  how many courses they share with the user; top K kept
  3. votes      = each neighbour votes once for every course they viewed
                  that the user has not
  4. ranking    = votes descending
  5. fallback   = pad from the global popularity ranking, skipping
                  anything already viewed or already picked

Ties are broken on the id (user id for neighbours, course id for
candidates) so two stores holding the same data always give the same
answer, whatever order they iterate in.

Store failures arrive here as empty reads, so a step that "fails" just
contributes no signal and the result slides toward pure popularity.
"""

from __future__ import annotations

import logging
from collections import Counter

from engagement.core.metrics import RECOMMENDATIONS_SERVED
from engagement.services.activity_recorder import (
    course_viewers_key,
    user_viewed_key,
)
from engagement.services.kv_store import KVStore, kv_store

logger = logging.getLogger(__name__)

NEIGHBOUR_COUNT = 5
DEFAULT_LIMIT = 5

POPULAR_COURSES_KEY = "popular:courses"


def _top(scores: Counter[str], n: int) -> list[str]:
    """Highest score first; equal scores in ascending id order."""
    ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
    return [key for key, _ in ranked[:n]]


class Recommender:
    def __init__(self, store: KVStore, *, neighbour_count: int = NEIGHBOUR_COUNT) -> None:
        self._store = store
        self._neighbour_count = neighbour_count

    async def similar_users(self, user_id: str, viewed: list[str]) -> list[str]:
        similarity: Counter[str] = Counter()
        for course_id in viewed:
            for viewer in await self._store.zrange(course_viewers_key(course_id), 0, -1):
                if viewer != user_id:
                    similarity[viewer] += 1
        return _top(similarity, self._neighbour_count)

    async def get_recommended_courses(
        self, user_id: str, limit: int = DEFAULT_LIMIT
    ) -> list[str]:
        if limit <= 0:
            return []

        viewed = await self._store.zrange(user_viewed_key(user_id), 0, -1)
        already_seen = set(viewed)

        votes: Counter[str] = Counter()
        for neighbour in await self.similar_users(user_id, viewed):
            for course_id in await self._store.zrange(user_viewed_key(neighbour), 0, -1):
                if course_id not in already_seen:
                    votes[course_id] += 1

        recommendations = _top(votes, limit)
        RECOMMENDATIONS_SERVED.labels(source="neighbors").inc(len(recommendations))

        if len(recommendations) < limit:
            padded = await self._fill_from_popular(
                recommendations, already_seen, limit
            )
            RECOMMENDATIONS_SERVED.labels(source="popular").inc(
                len(padded) - len(recommendations)
            )
            recommendations = padded

        logger.debug(
            "Recommended %d courses (%d voted)",
            len(recommendations),
            len(votes),
            extra={"user_id": user_id},
        )
        return recommendations

    async def _fill_from_popular(
        self, picked: list[str], already_seen: set[str], limit: int
    ) -> list[str]:
        # Read enough of the ranking that skipping viewed/picked entries
        # cannot leave a slot empty while popular courses remain.
        depth = limit + len(already_seen) + len(picked)
        popular = await self._store.zrange(POPULAR_COURSES_KEY, 0, depth - 1, rev=True)

        result = list(picked)
        for course_id in popular:
            if len(result) >= limit:
                break
            if course_id in already_seen or course_id in result:
                continue
            result.append(course_id)
        return result

    async def update_popularity_ranking(self) -> int:
        """Re-derive popular:courses from every course:*:views counter.

        A full scan, meant for a periodic job rather than the view path.
        Each ZADD overwrites one member's score, so running this while
        views keep arriving is safe: the ranking is at worst one refresh
        behind.  Returns the number of courses written.
        """
        updated = 0
        for key in await self._store.scan_keys("course:*:views"):
            # key shape: course:{course_id}:views; ids may contain ':'
            course_id = key[len("course:") : -len(":views")]
            raw = await self._store.get(key)
            try:
                views = int(raw) if raw is not None else 0
            except ValueError:
                logger.warning("Skipping non-integer view counter %s=%r", key, raw)
                continue
            await self._store.zadd(POPULAR_COURSES_KEY, {course_id: views})
            updated += 1
        logger.info("Popularity ranking refreshed for %d courses", updated)
        return updated


recommender = Recommender(kv_store)
