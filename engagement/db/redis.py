"""Redis connection management.

Redis is the only backing store this service talks to.  Everything the
engagement layer keeps is a counter, a hash or a sorted set:

  - course view counters        (INCR, never decremented)
  - who-viewed-what indexes     (sorted sets, score = weight or time)
  - the raw activity time series (sorted set, score = timestamp)
  - notification records         (hashes) and unread counters

When REDIS_URL is configured we create one shared connection pool at
import time.  When it is not (local dev, tests) the pool is None and
engagement/services/kv_store.py picks an in-process implementation
instead.  Consumers never branch on this themselves.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from engagement.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # return str instead of bytes
        max_connections=20,
        # A request should never wait long on analytics bookkeeping.
        socket_timeout=2.0,
        socket_connect_timeout=2.0,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook: verify connectivity, release the pool.

    A failed ping is logged and the app still starts.  The store wrapper
    degrades every call to a neutral value while Redis is unreachable.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured, using in-process store")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
