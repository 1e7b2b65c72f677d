"""Scheduled delivery of reminders and digests, with cancellation.

The dispatcher sits between product code and the external scheduler:

  schedule  validate the mode, publish, then remember the message id
            under (user, subject) in user:{u}:reminders
  cancel    look the id up, ask the scheduler to delete the job, then
            forget it locally

Unlike the recorder and the mailbox, failures here are reported back.
schedule and cancel return ScheduleResult / CancelResult with ok=False
and an error string instead of raising, so the caller decides whether
to retry.  "Nothing to cancel" is a valid outcome (error="not_found").

The dispatcher never retries on its own; ``retries`` is handed to the
scheduler, which owns redelivery.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from engagement.core.config import SETTINGS
from engagement.core.metrics import SCHEDULER_REQUESTS
from engagement.models.scheduled_job import CancelResult, ScheduledJob, ScheduleResult
from engagement.services.activity_recorder import now_ms
from engagement.services.kv_store import KVStore, kv_store
from engagement.services.scheduler import Scheduler, SchedulerError, scheduler

logger = logging.getLogger(__name__)

# Owner of jobs that do not belong to a learner (the daily rollup).
SYSTEM_USER = "_system"

COURSE_REMINDER_PATH = "/v1/reminders/course"
WEEKLY_DIGEST_PATH = "/v1/digest/weekly"
DAILY_ANALYTICS_PATH = "/v1/analytics/process-daily"

COURSE_REMINDER_RETRIES = 3
WEEKLY_DIGEST_CRON = "0 9 * * 1"  # Mondays, 09:00
DAILY_ANALYTICS_CRON = "0 0 * * *"  # midnight

WEEKLY_DIGEST_SUBJECT = "digest:weekly"
DAILY_ANALYTICS_SUBJECT = "analytics:daily"


def reminders_key(user_id: str) -> str:
    return f"user:{user_id}:reminders"


def course_subject(course_id: str) -> str:
    return f"course:{course_id}"


class Dispatcher:
    def __init__(
        self,
        store: KVStore,
        scheduler: Scheduler,
        *,
        callback_url: Callable[[str], str] = SETTINGS.callback_url,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._callback_url = callback_url
        self._clock = clock

    async def schedule(
        self,
        user_id: str,
        subject_key: str,
        target: str,
        payload: dict[str, Any],
        *,
        delay_seconds: int | None = None,
        cron: str | None = None,
        retries: int | None = None,
    ) -> ScheduleResult:
        if (delay_seconds is None) == (cron is None):
            return ScheduleResult(
                ok=False, error="exactly one of delay_seconds or cron is required"
            )
        if delay_seconds is not None and delay_seconds < 0:
            return ScheduleResult(ok=False, error="delay_seconds must be >= 0")
        if cron is not None and len(cron.split()) != 5:
            return ScheduleResult(ok=False, error=f"invalid cron expression {cron!r}")

        try:
            message_id = await self._scheduler.publish(
                target, payload, delay_seconds=delay_seconds, cron=cron, retries=retries
            )
        except SchedulerError as exc:
            SCHEDULER_REQUESTS.labels(operation="publish", result="error").inc()
            logger.error(
                "Failed to schedule delivery to %s: %s",
                target,
                exc,
                extra={"user_id": user_id, "subject_key": subject_key},
            )
            return ScheduleResult(ok=False, error=str(exc))
        SCHEDULER_REQUESTS.labels(operation="publish", result="ok").inc()

        job = ScheduledJob(
            message_id=message_id,
            user_id=user_id,
            subject_key=subject_key,
            target=target,
            mode="cron" if cron is not None else "delay",
            scheduled_at=datetime.fromtimestamp(
                self._clock() / 1000, tz=timezone.utc
            ).isoformat(),
            delay_seconds=delay_seconds,
            cron=cron,
            retries=retries,
        )
        previous = await self._lookup(user_id, subject_key)
        # Best-effort like every store write; the job is scheduled either way.
        await self._store.hset(reminders_key(user_id), {subject_key: job.to_json()})
        if previous is not None:
            await self._cancel_replaced(previous)
        logger.info(
            "Scheduled %s delivery to %s",
            job.mode,
            target,
            extra={"user_id": user_id, "subject_key": subject_key, "message_id": message_id},
        )
        return ScheduleResult(ok=True, message_id=message_id, job=job)

    async def _cancel_replaced(self, previous: ScheduledJob) -> None:
        # Once overwritten, the old message id is unreachable; cancel it
        # now or it keeps firing.
        try:
            await self._scheduler.cancel(previous.message_id)
            SCHEDULER_REQUESTS.labels(operation="cancel", result="ok").inc()
        except SchedulerError as exc:
            SCHEDULER_REQUESTS.labels(operation="cancel", result="error").inc()
            logger.warning(
                "Could not cancel replaced delivery: %s",
                exc,
                extra={
                    "user_id": previous.user_id,
                    "subject_key": previous.subject_key,
                    "message_id": previous.message_id,
                },
            )

    async def scheduled_jobs(self, user_id: str) -> list[ScheduledJob]:
        jobs = []
        for subject_key, raw in (await self._store.hgetall(reminders_key(user_id))).items():
            try:
                jobs.append(ScheduledJob.from_json(raw))
            except (ValueError, TypeError):
                logger.warning(
                    "Skipping malformed scheduled job",
                    extra={"user_id": user_id, "subject_key": subject_key},
                )
        return sorted(jobs, key=lambda job: job.scheduled_at, reverse=True)

    async def _lookup(self, user_id: str, subject_key: str) -> ScheduledJob | None:
        raw = (await self._store.hgetall(reminders_key(user_id))).get(subject_key)
        if raw is None:
            return None
        try:
            return ScheduledJob.from_json(raw)
        except (ValueError, TypeError):
            logger.warning(
                "Malformed scheduled job record",
                extra={"user_id": user_id, "subject_key": subject_key},
            )
            return None

    async def cancel(self, user_id: str, subject_key: str) -> CancelResult:
        job = await self._lookup(user_id, subject_key)
        if job is None:
            return CancelResult(ok=False, error="not_found")

        try:
            await self._scheduler.cancel(job.message_id)
        except SchedulerError as exc:
            SCHEDULER_REQUESTS.labels(operation="cancel", result="error").inc()
            logger.error(
                "Failed to cancel scheduled delivery: %s",
                exc,
                extra={
                    "user_id": user_id,
                    "subject_key": subject_key,
                    "message_id": job.message_id,
                },
            )
            # Keep the local record so the cancel can be retried.
            return CancelResult(ok=False, error=str(exc))
        SCHEDULER_REQUESTS.labels(operation="cancel", result="ok").inc()

        await self._store.hdel(reminders_key(user_id), subject_key)
        return CancelResult(ok=True)

    async def complete(self, user_id: str, subject_key: str, message_id: str | None) -> bool:
        """Forget a one-shot job once its delivery has arrived.

        Only removes the record when it still points at the delivered
        message, so a reminder rescheduled in the meantime survives.
        """
        job = await self._lookup(user_id, subject_key)
        if job is None or job.mode != "delay":
            return False
        if message_id is not None and job.message_id != message_id:
            return False
        return await self._store.hdel(reminders_key(user_id), subject_key) > 0

    # ------------------------------------------------------------------
    # Product schedules
    # ------------------------------------------------------------------

    async def schedule_course_reminder(
        self, user_id: str, course_id: str, course_title: str, delay_hours: int = 24
    ) -> ScheduleResult:
        return await self.schedule(
            user_id,
            course_subject(course_id),
            self._callback_url(COURSE_REMINDER_PATH),
            {"userId": user_id, "courseId": course_id, "courseTitle": course_title},
            delay_seconds=delay_hours * 60 * 60,
            retries=COURSE_REMINDER_RETRIES,
        )

    async def schedule_weekly_digest(self, user_id: str) -> ScheduleResult:
        return await self.schedule(
            user_id,
            WEEKLY_DIGEST_SUBJECT,
            self._callback_url(WEEKLY_DIGEST_PATH),
            {"userId": user_id},
            cron=WEEKLY_DIGEST_CRON,
        )

    async def schedule_daily_analytics(self) -> ScheduleResult:
        return await self.schedule(
            SYSTEM_USER,
            DAILY_ANALYTICS_SUBJECT,
            self._callback_url(DAILY_ANALYTICS_PATH),
            {},
            cron=DAILY_ANALYTICS_CRON,
        )


dispatcher = Dispatcher(kv_store, scheduler)
