"""Handlers for deliveries the scheduler calls back with.

The scheduler delivers at-least-once.  When a delivery carries a message
id, the first arrival claims it with an atomic INCR on
delivery:{message_id}; any later arrival sees a count above 1 and is
acknowledged without side effects.  Claims expire after three days, well
past the scheduler's retry window.  Deliveries without an id cannot be
deduplicated and are always processed.
"""

from __future__ import annotations

import logging

from engagement.models.notification import NotificationType
from engagement.services.activity_recorder import ActivityRecorder, activity_recorder
from engagement.services.dispatcher import Dispatcher, course_subject, dispatcher
from engagement.services.kv_store import KVStore, kv_store
from engagement.services.mailbox import Mailbox, mailbox
from engagement.services.recommender import Recommender, recommender

logger = logging.getLogger(__name__)

DIGEST_RECOMMENDATION_COUNT = 3

# Delivery claims outlive the scheduler's retry window, then self-clean.
DELIVERY_CLAIM_TTL_SECONDS = 3 * 24 * 60 * 60


class DeliveryHandler:
    def __init__(
        self,
        store: KVStore,
        mailbox: Mailbox,
        recommender: Recommender,
        dispatcher: Dispatcher,
        recorder: ActivityRecorder,
    ) -> None:
        self._store = store
        self._mailbox = mailbox
        self._recommender = recommender
        self._dispatcher = dispatcher
        self._recorder = recorder

    async def _first_delivery(self, message_id: str | None) -> bool:
        if not message_id:
            return True
        claim_key = f"delivery:{message_id}"
        # A degraded store answers 0; process rather than drop the delivery.
        claims = await self._store.incr(claim_key)
        if claims == 1:
            await self._store.expire(claim_key, DELIVERY_CLAIM_TTL_SECONDS)
        return claims <= 1

    async def course_reminder(
        self,
        user_id: str,
        course_id: str,
        course_title: str,
        message_id: str | None = None,
    ) -> str | None:
        """Post a "continue your course" reminder.  Returns the notification id."""
        if not await self._first_delivery(message_id):
            logger.info(
                "Duplicate course reminder delivery ignored",
                extra={"user_id": user_id, "message_id": message_id},
            )
            return None

        notification_id = await self._mailbox.add(
            user_id,
            NotificationType.REMINDER,
            "Continue your course",
            f'Pick up where you left off in "{course_title}".',
            link=f"/courses/{course_id}",
        )
        await self._dispatcher.complete(user_id, course_subject(course_id), message_id)
        return notification_id

    async def weekly_digest(
        self, user_id: str, message_id: str | None = None
    ) -> str | None:
        """Post this week's recommendations by title, if any are known."""
        if not await self._first_delivery(message_id):
            logger.info(
                "Duplicate weekly digest delivery ignored",
                extra={"user_id": user_id, "message_id": message_id},
            )
            return None

        course_ids = await self._recommender.get_recommended_courses(
            user_id, DIGEST_RECOMMENDATION_COUNT
        )
        if not course_ids:
            logger.info("No recommendations for weekly digest", extra={"user_id": user_id})
            return None

        # Courses never seen with a title are left out of the digest.
        known = await self._recorder.course_titles(course_ids)
        if not known:
            logger.info(
                "No titled courses among %d recommendations, weekly digest skipped",
                len(course_ids),
                extra={"user_id": user_id},
            )
            return None

        titles = ", ".join(f'"{known[c]}"' for c in course_ids if c in known)
        return await self._mailbox.add(
            user_id,
            NotificationType.ANNOUNCEMENT,
            "Your Weekly Course Recommendations",
            f"Based on your interests, we recommend: {titles}",
            link="/dashboard",
        )


delivery_handler = DeliveryHandler(
    kv_store, mailbox, recommender, dispatcher, activity_recorder
)
