from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Literal

ScheduleMode = Literal["delay", "cron"]


@dataclass(frozen=True, slots=True)
class ScheduledJob:
    """Local record of a delivery handed to the external scheduler.

    ``message_id`` is the scheduler's handle and the only way to cancel
    the job.  Records live in the per-user reminders hash, one field per
    ``subject_key`` ("course:bio101", "digest:weekly"), so scheduling the
    same subject again replaces the previous record.
    """

    message_id: str
    user_id: str
    subject_key: str
    target: str
    mode: ScheduleMode
    scheduled_at: str  # ISO-8601, UTC
    delay_seconds: int | None = None
    cron: str | None = None
    retries: int | None = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @staticmethod
    def from_json(raw: str) -> ScheduledJob:
        data = json.loads(raw)
        return ScheduledJob(**data)


@dataclass(frozen=True, slots=True)
class ScheduleResult:
    """Tagged outcome of a schedule call.

    Scheduling failures are returned, not raised: a missing reminder is
    visible to the learner, so callers get the chance to retry or report.
    """

    ok: bool
    message_id: str | None = None
    error: str | None = None
    job: ScheduledJob | None = None


@dataclass(frozen=True, slots=True)
class CancelResult:
    ok: bool
    error: str | None = None  # "not_found" or the scheduler's error text
