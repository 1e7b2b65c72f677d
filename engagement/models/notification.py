from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class NotificationType(str, Enum):
    COURSE_UPDATE = "course_update"
    ACHIEVEMENT = "achievement"
    REMINDER = "reminder"
    ANNOUNCEMENT = "announcement"


@dataclass(frozen=True, slots=True)
class Notification:
    """A mailbox entry.

    Only ``read`` ever changes after creation, and only from False to
    True.  Persisted as a Redis hash; every field is a string there, so
    to_hash/from_hash own the conversion.
    """

    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    created_at: str  # ISO-8601, UTC
    read: bool = False
    link: str | None = None

    def to_hash(self) -> dict[str, str]:
        record = {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "createdAt": self.created_at,
            "read": "true" if self.read else "false",
        }
        if self.link is not None:
            record["link"] = self.link
        return record

    @staticmethod
    def from_hash(record: dict[str, str]) -> Notification:
        return Notification(
            id=record["id"],
            user_id=record["userId"],
            type=NotificationType(record["type"]),
            title=record.get("title", ""),
            message=record.get("message", ""),
            created_at=record.get("createdAt", ""),
            read=record.get("read") == "true",
            link=record.get("link"),
        )
