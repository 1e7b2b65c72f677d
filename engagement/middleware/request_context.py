"""Request context middleware: a request id on every log line.

The id comes from the caller's X-Request-ID header or is generated, is
stored in a ContextVar (per asyncio task, so concurrent requests on one
thread never see each other's id), and is attached to every LogRecord by
a filter on the root handlers.

Scheduler callbacks also carry Upstash-Message-Id.  It is bound the
same way, so every line logged while handling a delivery can be matched
to the scheduled job that triggered it.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
message_id_var: ContextVar[str | None] = ContextVar("message_id", default=None)


class _RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        if getattr(record, "message_id", None) is None:
            record.message_id = message_id_var.get(None)  # type: ignore[attr-defined]
        return True


def install_request_context_filter() -> None:
    """Attach the filter to the root logger's handlers.

    Logger-level filters only see records logged on that exact logger;
    handler-level filters see everything that propagates to root.  Call
    again after setup_logging() replaces the handlers.
    """
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, _RequestContextFilter) for f in handler.filters):
            handler.addFilter(_RequestContextFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id, bind the delivery id, time and log the request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)
        message_id_var.set(request.headers.get("upstash-message-id"))

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
