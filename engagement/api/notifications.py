"""Notification mailbox endpoints.

Authentication is handled upstream; user ids arrive already trusted.
Reads never fail because of the store: a degraded store looks like an
empty mailbox with a zero badge.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from engagement.models.notification import Notification, NotificationType
from engagement.services.mailbox import mailbox

router = APIRouter(tags=["notifications"])


class NotificationIn(BaseModel):
    type: NotificationType
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=2000)
    link: str | None = None


class BroadcastIn(NotificationIn):
    user_ids: list[str] = Field(min_length=1)


class NotificationOut(BaseModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    link: str | None
    created_at: str
    read: bool

    @staticmethod
    def of(n: Notification) -> NotificationOut:
        return NotificationOut(
            id=n.id,
            user_id=n.user_id,
            type=n.type,
            title=n.title,
            message=n.message,
            link=n.link,
            created_at=n.created_at,
            read=n.read,
        )


class CreatedOut(BaseModel):
    id: str


class BroadcastOut(BaseModel):
    ids: list[str]


class UnreadCountOut(BaseModel):
    unread: int


class OkOut(BaseModel):
    ok: bool


@router.get("/v1/users/{user_id}/notifications", response_model=list[NotificationOut])
async def list_notifications(
    user_id: str,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[NotificationOut]:
    return [NotificationOut.of(n) for n in await mailbox.list(user_id, limit, offset)]


@router.post(
    "/v1/users/{user_id}/notifications",
    response_model=CreatedOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_notification(user_id: str, body: NotificationIn) -> CreatedOut:
    notification_id = await mailbox.add(
        user_id, body.type, body.title, body.message, body.link
    )
    return CreatedOut(id=notification_id)


@router.post(
    "/v1/notifications/broadcast",
    response_model=BroadcastOut,
    status_code=status.HTTP_201_CREATED,
)
async def broadcast_notification(body: BroadcastIn) -> BroadcastOut:
    ids = await mailbox.broadcast(
        body.user_ids, body.type, body.title, body.message, body.link
    )
    return BroadcastOut(ids=ids)


@router.get(
    "/v1/users/{user_id}/notifications/unread-count", response_model=UnreadCountOut
)
async def unread_count(user_id: str) -> UnreadCountOut:
    return UnreadCountOut(unread=await mailbox.unread_count(user_id))


@router.post("/v1/users/{user_id}/notifications/read-all", response_model=OkOut)
async def mark_all_read(user_id: str) -> OkOut:
    return OkOut(ok=await mailbox.mark_all_read(user_id))


@router.post(
    "/v1/users/{user_id}/notifications/{notification_id}/read", response_model=OkOut
)
async def mark_read(user_id: str, notification_id: str) -> OkOut:
    if not await mailbox.mark_read(user_id, notification_id):
        raise HTTPException(status_code=404, detail="notification not found")
    return OkOut(ok=True)
