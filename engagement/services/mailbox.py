"""Per-user notification mailbox with an incrementally maintained unread count.

Storage layout:

    notification:{id}                hash, one per notification
    user:{u}:notifications           sorted set of ids, score = created ms
    user:{u}:unread_notifications    counter read by the UI badge

The counter is never recomputed by scanning on the normal path.  add
increments it, mark_read decrements it, mark_all_read resets it to an
absolute 0, which is also the only repair for drift.

Known race: two concurrent mark_read calls on the same unread
notification can both see read=false and both decrement.  The > 0 guard
stops the counter going negative; mark_all_read brings it back to truth.
"""

from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from engagement.core.metrics import NOTIFICATIONS
from engagement.models.notification import Notification, NotificationType
from engagement.services.activity_recorder import now_ms
from engagement.services.kv_store import KVStore, kv_store

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def notification_key(notification_id: str) -> str:
    return f"notification:{notification_id}"


def user_notifications_key(user_id: str) -> str:
    return f"user:{user_id}:notifications"


def unread_counter_key(user_id: str) -> str:
    return f"user:{user_id}:unread_notifications"


def new_notification_id(created_ms: int) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"{created_ms}-{suffix}"


class Mailbox:
    def __init__(self, store: KVStore, *, clock: Callable[[], int] = now_ms) -> None:
        self._store = store
        self._clock = clock

    async def add(
        self,
        user_id: str,
        type: NotificationType | str,
        title: str,
        message: str,
        link: str | None = None,
    ) -> str:
        """Create an unread notification and return its id.

        Best-effort: the id is returned even if one of the writes was
        dropped by a degraded store.
        """
        created = self._clock()
        notification = Notification(
            id=new_notification_id(created),
            user_id=user_id,
            type=NotificationType(type),
            title=title,
            message=message,
            link=link,
            created_at=datetime.fromtimestamp(created / 1000, tz=timezone.utc).isoformat(),
            read=False,
        )

        await self._store.hset(notification_key(notification.id), notification.to_hash())
        await self._store.zadd(user_notifications_key(user_id), {notification.id: created})
        if await self._store.incr(unread_counter_key(user_id)) <= 0:
            logger.warning(
                "Unread counter not incremented for notification %s",
                notification.id,
                extra={"user_id": user_id},
            )

        NOTIFICATIONS.labels(event="added").inc()
        return notification.id

    async def broadcast(
        self,
        user_ids: Iterable[str],
        type: NotificationType | str,
        title: str,
        message: str,
        link: str | None = None,
    ) -> list[str]:
        return [await self.add(u, type, title, message, link) for u in user_ids]

    async def list(self, user_id: str, limit: int = 10, offset: int = 0) -> list[Notification]:
        """Newest first.  Ids whose record is gone are skipped."""
        if limit <= 0 or offset < 0:
            return []
        ids = await self._store.zrange(
            user_notifications_key(user_id), offset, offset + limit - 1, rev=True
        )
        notifications = []
        for notification_id in ids:
            record = await self._store.hgetall(notification_key(notification_id))
            if not record:
                continue
            try:
                notifications.append(Notification.from_hash(record))
            except (KeyError, ValueError):
                logger.warning("Skipping malformed notification %s", notification_id)
        return notifications

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        record = await self._store.hgetall(notification_key(notification_id))
        if not record or record.get("userId") != user_id:
            return False
        if record.get("read") == "true":
            # Already read: a repeat call must not decrement again.
            return True

        await self._store.hset(notification_key(notification_id), {"read": "true"})
        unread = await self.unread_count(user_id)
        if unread > 0:
            await self._store.decr(unread_counter_key(user_id))

        NOTIFICATIONS.labels(event="read").inc()
        return True

    async def mark_all_read(self, user_id: str) -> bool:
        for notification_id in await self._store.zrange(
            user_notifications_key(user_id), 0, -1
        ):
            await self._store.hset(notification_key(notification_id), {"read": "true"})

        # Absolute reset, not a decrement by count: repairs any drift.
        ok = await self._store.set(unread_counter_key(user_id), 0)
        if not ok:
            logger.warning("Failed to reset unread counter", extra={"user_id": user_id})
            return False

        NOTIFICATIONS.labels(event="read_all").inc()
        return True

    async def unread_count(self, user_id: str) -> int:
        raw = await self._store.get(unread_counter_key(user_id))
        try:
            return max(int(raw), 0) if raw is not None else 0
        except ValueError:
            return 0


mailbox = Mailbox(kv_store)
