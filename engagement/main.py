from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from engagement.api.activity import router as activity_router
from engagement.api.analytics import router as analytics_router
from engagement.api.health import router as health_router
from engagement.api.metrics_endpoint import router as metrics_router
from engagement.api.notifications import router as notifications_router
from engagement.api.recommendations import router as recommendations_router
from engagement.api.reminders import router as reminders_router
from engagement.core.config import SETTINGS
from engagement.core.logging import setup_logging
from engagement.db.redis import lifespan_redis
from engagement.middleware.metrics import MetricsMiddleware
from engagement.middleware.request_context import (
    RequestContextMiddleware,
    install_request_context_filter,
)
from engagement.services.scheduler import HttpScheduler, scheduler

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
install_request_context_filter()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    async with lifespan_redis():
        yield
        if isinstance(scheduler, HttpScheduler):
            await scheduler.aclose()


app = FastAPI(
    title="engagement-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last-added runs first: RequestContext (outermost) → Metrics → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(activity_router)
app.include_router(recommendations_router)
app.include_router(analytics_router)
app.include_router(notifications_router)
app.include_router(reminders_router)

logger.info(
    "engagement-service started  env=%s log_level=%s port=%d redis=%s scheduler=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.redis_url else "off",
    type(scheduler).__name__,
)
