from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from uuid import uuid4


class Action(str, Enum):
    VIEW = "view"
    COMPLETE = "complete"
    INTERACT = "interact"


@dataclass(frozen=True, slots=True)
class ActivityEvent:
    """One recorded interaction; append-only, never mutated.

    Stored as a JSON member of the activity time series, scored by
    ``timestamp`` (epoch milliseconds).  ``id`` keeps two otherwise
    identical events in the same millisecond from collapsing into one
    sorted-set member: duplicates are counted separately.
    """

    id: str
    user_id: str
    course_id: str
    action: Action
    timestamp: int

    @staticmethod
    def new(
        *, user_id: str, course_id: str, action: Action, timestamp: int
    ) -> ActivityEvent:
        return ActivityEvent(
            id=uuid4().hex,
            user_id=user_id,
            course_id=course_id,
            action=action,
            timestamp=timestamp,
        )

    def to_member(self) -> str:
        return json.dumps(
            {
                "id": self.id,
                "userId": self.user_id,
                "courseId": self.course_id,
                "action": self.action.value,
                "timestamp": self.timestamp,
            },
            separators=(",", ":"),
        )

    @staticmethod
    def from_member(member: str) -> ActivityEvent:
        """Parse a stored member.  Raises ValueError on malformed input."""
        try:
            data = json.loads(member)
            return ActivityEvent(
                id=data.get("id", ""),
                user_id=str(data["userId"]),
                course_id=str(data["courseId"]),
                action=Action(data["action"]),
                timestamp=int(data["timestamp"]),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"malformed activity event: {member!r}") from exc
