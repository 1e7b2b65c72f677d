"""Reminder and digest scheduling, cancellation, and delivery callbacks.

Scheduling side (called by the product):

  POST   /v1/reminders/schedule                       course reminder | weekly digest
  GET    /v1/users/{user_id}/reminders                what is scheduled
  DELETE /v1/users/{user_id}/reminders/{subject_key}  cancel

A scheduler failure is a 502 carrying the scheduler's error, so the
caller can retry the enqueue.  Cancelling something that does not exist
is a 404, not a server error.

Delivery side (called back by the scheduler, at-least-once):

  POST /v1/reminders/course
  POST /v1/digest/weekly

The scheduler sends the message id in the Upstash-Message-Id header;
duplicates of an already-handled id are acknowledged and skipped.
"""

from __future__ import annotations

from typing import Annotated, Literal

from fastapi import APIRouter, Header, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from engagement.models.scheduled_job import ScheduledJob, ScheduleResult
from engagement.services.deliveries import delivery_handler
from engagement.services.dispatcher import dispatcher

router = APIRouter(tags=["reminders"])


class ScheduleReminderIn(BaseModel):
    type: Literal["course", "weekly-digest"]
    user_id: str = Field(min_length=1)
    course_id: str | None = None
    course_title: str | None = None
    delay_hours: int = Field(default=24, ge=0, le=24 * 30)


class ScheduledOut(BaseModel):
    message_id: str
    subject_key: str


class ScheduledJobOut(BaseModel):
    message_id: str
    subject_key: str
    target: str
    mode: str
    scheduled_at: str
    delay_seconds: int | None
    cron: str | None
    retries: int | None

    @staticmethod
    def of(job: ScheduledJob) -> ScheduledJobOut:
        return ScheduledJobOut(
            message_id=job.message_id,
            subject_key=job.subject_key,
            target=job.target,
            mode=job.mode,
            scheduled_at=job.scheduled_at,
            delay_seconds=job.delay_seconds,
            cron=job.cron,
            retries=job.retries,
        )


class CourseReminderDelivery(BaseModel):
    # Published payloads use camelCase keys.
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    course_id: str = Field(alias="courseId", min_length=1)
    course_title: str = Field(alias="courseTitle")


class WeeklyDigestDelivery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)


class DeliveryOut(BaseModel):
    success: bool
    duplicate: bool = False
    notification_id: str | None = None


def _scheduled_or_502(result: ScheduleResult) -> ScheduledOut:
    if not result.ok or result.job is None:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=result.error or "failed to schedule reminder",
        )
    return ScheduledOut(message_id=result.job.message_id, subject_key=result.job.subject_key)


@router.post(
    "/v1/reminders/schedule",
    response_model=ScheduledOut,
    status_code=status.HTTP_201_CREATED,
)
async def schedule_reminder(body: ScheduleReminderIn) -> ScheduledOut:
    if body.type == "course":
        if not body.course_id or not body.course_title:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="course reminders require course_id and course_title",
            )
        result = await dispatcher.schedule_course_reminder(
            body.user_id, body.course_id, body.course_title, body.delay_hours
        )
    else:
        result = await dispatcher.schedule_weekly_digest(body.user_id)
    return _scheduled_or_502(result)


@router.get("/v1/users/{user_id}/reminders", response_model=list[ScheduledJobOut])
async def list_reminders(user_id: str) -> list[ScheduledJobOut]:
    return [ScheduledJobOut.of(job) for job in await dispatcher.scheduled_jobs(user_id)]


@router.delete(
    "/v1/users/{user_id}/reminders/{subject_key}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def cancel_reminder(user_id: str, subject_key: str) -> None:
    result = await dispatcher.cancel(user_id, subject_key)
    if result.ok:
        return None
    if result.error == "not_found":
        raise HTTPException(status_code=404, detail="reminder not found")
    raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result.error)


@router.post("/v1/reminders/course", response_model=DeliveryOut)
async def deliver_course_reminder(
    body: CourseReminderDelivery,
    upstash_message_id: Annotated[str | None, Header()] = None,
) -> DeliveryOut:
    notification_id = await delivery_handler.course_reminder(
        body.user_id, body.course_id, body.course_title, upstash_message_id
    )
    return DeliveryOut(
        success=True,
        duplicate=notification_id is None,
        notification_id=notification_id,
    )


@router.post("/v1/digest/weekly", response_model=DeliveryOut)
async def deliver_weekly_digest(
    body: WeeklyDigestDelivery,
    upstash_message_id: Annotated[str | None, Header()] = None,
) -> DeliveryOut:
    notification_id = await delivery_handler.weekly_digest(
        body.user_id, upstash_message_id
    )
    return DeliveryOut(success=True, notification_id=notification_id)
