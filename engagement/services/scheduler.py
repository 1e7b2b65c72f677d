"""Delivery scheduler capability: "POST this JSON to that URL, later".

Timers do not live in this process.  Reminders, digests and the daily
rollup are handed to an external scheduler which calls our HTTP
endpoints back when they are due.  Two scheduling modes exist:

  delay  one-shot, delivered once after N seconds
  cron   recurring, delivered on every tick of a cron expression

The scheduler retries failed deliveries itself (``retries`` is passed
through) and delivers at-least-once, so the callback endpoints must
tolerate duplicates.

HttpScheduler speaks the Upstash QStash v2 REST API:

  POST   /v2/publish/{url}     Upstash-Delay: 86400s   -> {"messageId"}
  POST   /v2/schedules/{url}   Upstash-Cron: 0 9 * * 1 -> {"scheduleId"}
  DELETE /v2/messages/{id}  or  /v2/schedules/{id}

Schedule ids carry an "scd_" prefix, which is how cancel() knows which
resource to delete.  Every failure, HTTP or transport, is raised as
SchedulerError; turning it into a tagged result is the dispatcher's job.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx

from engagement.core.config import SETTINGS

logger = logging.getLogger(__name__)

_SCHEDULE_PREFIX = "scd_"


class SchedulerError(Exception):
    """The scheduler refused or could not be reached."""


@runtime_checkable
class Scheduler(Protocol):
    async def publish(
        self,
        url: str,
        body: dict[str, Any],
        *,
        delay_seconds: int | None = None,
        cron: str | None = None,
        retries: int | None = None,
    ) -> str:
        """Schedule a delivery and return its message id."""
        ...

    async def cancel(self, message_id: str) -> None: ...


@dataclass(frozen=True, slots=True)
class PublishedMessage:
    message_id: str
    url: str
    body: dict[str, Any]
    delay_seconds: int | None = None
    cron: str | None = None
    retries: int | None = None


class InMemoryScheduler:
    """Records publications instead of delivering them (dev and tests)."""

    def __init__(self) -> None:
        self._messages: dict[str, PublishedMessage] = {}

    @property
    def messages(self) -> dict[str, PublishedMessage]:
        return dict(self._messages)

    def clear(self) -> None:
        self._messages.clear()

    async def publish(
        self,
        url: str,
        body: dict[str, Any],
        *,
        delay_seconds: int | None = None,
        cron: str | None = None,
        retries: int | None = None,
    ) -> str:
        prefix = _SCHEDULE_PREFIX if cron else "msg_"
        message_id = f"{prefix}{uuid.uuid4().hex}"
        self._messages[message_id] = PublishedMessage(
            message_id=message_id,
            url=url,
            body=body,
            delay_seconds=delay_seconds,
            cron=cron,
            retries=retries,
        )
        return message_id

    async def cancel(self, message_id: str) -> None:
        if self._messages.pop(message_id, None) is None:
            raise SchedulerError(f"message {message_id} not found")


class HttpScheduler:
    """QStash-compatible scheduler over HTTPS."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SchedulerError(
                f"{method} {path} returned {exc.response.status_code}: "
                f"{exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SchedulerError(f"{method} {path} failed: {exc}") from exc
        return response

    async def publish(
        self,
        url: str,
        body: dict[str, Any],
        *,
        delay_seconds: int | None = None,
        cron: str | None = None,
        retries: int | None = None,
    ) -> str:
        headers = {}
        if retries is not None:
            headers["Upstash-Retries"] = str(retries)

        if cron is not None:
            headers["Upstash-Cron"] = cron
            path, id_field = f"/v2/schedules/{url}", "scheduleId"
        else:
            if delay_seconds is not None:
                headers["Upstash-Delay"] = f"{delay_seconds}s"
            path, id_field = f"/v2/publish/{url}", "messageId"

        response = await self._request("POST", path, json=body, headers=headers)
        try:
            message_id = response.json()[id_field]
        except (ValueError, KeyError, TypeError) as exc:
            raise SchedulerError(f"unexpected scheduler response: {response.text[:200]}") from exc
        return str(message_id)

    async def cancel(self, message_id: str) -> None:
        resource = "schedules" if message_id.startswith(_SCHEDULE_PREFIX) else "messages"
        await self._request("DELETE", f"/v2/{resource}/{message_id}")


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if SETTINGS.qstash_token:
    scheduler: Scheduler = HttpScheduler(SETTINGS.qstash_url, SETTINGS.qstash_token)
else:
    scheduler = InMemoryScheduler()
