"""Activity ingestion endpoints.

Called by the product frontend/backend on every course page view and
learner interaction.  Both writes are best-effort: the response says
whether the write landed ("recorded"), but a store outage is never an
HTTP error, because the user-facing action has already happened.

  POST /v1/activity/views     -> live indexes (recommendations, popularity)
  POST /v1/activity/events    -> raw time series (daily rollups)
  GET  /v1/courses/{id}/views -> lifetime view counter
  GET  /v1/users/{id}/viewed  -> the user's recently viewed courses
"""

from __future__ import annotations

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from engagement.models.activity import Action
from engagement.services.activity_recorder import activity_recorder

router = APIRouter(tags=["activity"])


class CourseViewIn(BaseModel):
    user_id: str = Field(min_length=1)
    course_id: str = Field(min_length=1)
    course_title: str | None = Field(default=None, min_length=1)


class ActivityEventIn(BaseModel):
    user_id: str = Field(min_length=1)
    course_id: str = Field(min_length=1)
    action: Action


class RecordedOut(BaseModel):
    recorded: bool


class ViewCountOut(BaseModel):
    course_id: str
    views: int


class RecentlyViewedOut(BaseModel):
    user_id: str
    course_ids: list[str]


@router.post(
    "/v1/activity/views",
    response_model=RecordedOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def record_view(body: CourseViewIn) -> RecordedOut:
    recorded = await activity_recorder.record_view(
        body.user_id, body.course_id, body.course_title
    )
    return RecordedOut(recorded=recorded)


@router.post(
    "/v1/activity/events",
    response_model=RecordedOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def record_activity(body: ActivityEventIn) -> RecordedOut:
    recorded = await activity_recorder.record_activity(
        body.user_id, body.course_id, body.action
    )
    return RecordedOut(recorded=recorded)


@router.get("/v1/courses/{course_id}/views", response_model=ViewCountOut)
async def get_view_count(course_id: str) -> ViewCountOut:
    return ViewCountOut(
        course_id=course_id, views=await activity_recorder.view_count(course_id)
    )


@router.get("/v1/users/{user_id}/viewed", response_model=RecentlyViewedOut)
async def get_recently_viewed(user_id: str) -> RecentlyViewedOut:
    return RecentlyViewedOut(
        user_id=user_id, course_ids=await activity_recorder.recently_viewed(user_id)
    )
