"""Daily analytics endpoints.

POST /v1/analytics/process-daily is the scheduler's callback (cron
"0 0 * * *", registered with POST /v1/analytics/schedule).  It may also
be called by an operator; an explicit ``now`` reruns the rollup for a
past window.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from engagement.services.activity_recorder import now_ms
from engagement.services.aggregator import DAY_MS, aggregator
from engagement.services.dispatcher import dispatcher

router = APIRouter(prefix="/v1/analytics", tags=["analytics"])


class ProcessDailyIn(BaseModel):
    now: int | None = None  # epoch ms; defaults to the server clock


class UserEngagementOut(BaseModel):
    user_id: str
    course_count: int


class DailySummaryOut(BaseModel):
    processed: int
    course_views: dict[str, int]
    user_engagement: list[UserEngagementOut]


class ScheduledOut(BaseModel):
    message_id: str


@router.post("/process-daily", response_model=DailySummaryOut)
async def process_daily(body: ProcessDailyIn | None = None) -> DailySummaryOut:
    summary = await aggregator.process_daily(body.now if body else None)
    return DailySummaryOut(
        processed=summary.processed,
        course_views=summary.course_views,
        user_engagement=[
            UserEngagementOut(user_id=e.user_id, course_count=e.course_count)
            for e in summary.user_engagement
        ],
    )


@router.post(
    "/schedule", response_model=ScheduledOut, status_code=status.HTTP_201_CREATED
)
async def schedule_daily_analytics() -> ScheduledOut:
    result = await dispatcher.schedule_daily_analytics()
    if not result.ok or result.message_id is None:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result.error)
    return ScheduledOut(message_id=result.message_id)


@router.get("/rollups/course-views", response_model=dict[str, dict[str, int]])
async def course_views_by_date(
    since: Annotated[int | None, Query(ge=0)] = None,
    until: Annotated[int | None, Query(ge=0)] = None,
) -> dict[str, dict[str, int]]:
    """Per-day course views, {date: {course_id: views}}; default last 7 days."""
    until = now_ms() if until is None else until
    since = until - 7 * DAY_MS if since is None else since
    return await aggregator.course_views_by_date(since, until)
