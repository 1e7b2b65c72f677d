"""Key-value store capability used by every engagement component.

THE CONTRACT
-------------
The recorder, recommender, aggregator, mailbox and dispatcher only ever
talk to Redis through the KVStore protocol below: strings, counters,
hashes and sorted sets.  Nothing else is needed, and keeping the surface
this narrow is what lets three interchangeable implementations exist.

DEGRADE, DON'T CRASH
---------------------
Every operation returns a neutral value instead of raising when the
backend is unavailable:

    reads of a missing/unreachable key  -> None, {}, [] or 0
    counters (incr, zincrby, hincrby)   -> 0
    writes                              -> 0 / False

Callers rely on this.  A page view must not fail because the analytics
store is down, so none of the services wrap store calls in try/except.
Where a caller needs to know whether a write landed, it looks at a
return value that cannot be neutral on success: INCR on a counter always
returns >= 1, and ZADD of a fresh member always returns 1.

THREE IMPLEMENTATIONS
----------------------
  RedisKVStore     production.  Converts RedisError into the neutral
                   value, logs it and counts it in kv_store_errors_total.
  InMemoryKVStore  dev and tests.  Implements Redis' ordering and range
                   rules so behaviour matches production.
  NullKVStore      the capability null-object.  Selected when nothing is
                   configured in prod, so a missing REDIS_URL degrades
                   the features rather than silently keeping per-process
                   state on one replica.
"""

from __future__ import annotations

import fnmatch
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar, runtime_checkable

from redis.exceptions import RedisError

from engagement.core.config import SETTINGS
from engagement.core.metrics import KV_STORE_ERRORS
from engagement.db.redis import redis_pool

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Sorted-set score bounds accept numbers or Redis' "-inf" / "+inf".
ScoreBound = float | int | str


@runtime_checkable
class KVStore(Protocol):
    # strings and counters
    async def get(self, key: str) -> str | None: ...
    async def set(self, key: str, value: str | int) -> bool: ...
    async def incr(self, key: str) -> int: ...
    async def decr(self, key: str) -> int: ...
    async def expire(self, key: str, seconds: int) -> bool: ...

    # hashes
    async def hset(self, key: str, mapping: dict[str, str]) -> int: ...
    async def hgetall(self, key: str) -> dict[str, str]: ...
    async def hdel(self, key: str, *fields: str) -> int: ...
    async def hincrby(self, key: str, field: str, delta: int = 1) -> int: ...

    # sorted sets
    async def zadd(self, key: str, mapping: dict[str, float]) -> int: ...
    async def zincrby(self, key: str, delta: float, member: str) -> float: ...
    async def zscore(self, key: str, member: str) -> float | None: ...
    async def zrange(
        self, key: str, start: int, stop: int, *, rev: bool = False
    ) -> list[str]: ...
    async def zrangebyscore(
        self, key: str, min_score: ScoreBound, max_score: ScoreBound
    ) -> list[str]: ...
    async def zremrangebyrank(self, key: str, start: int, stop: int) -> int: ...
    async def zremrangebyscore(
        self, key: str, min_score: ScoreBound, max_score: ScoreBound
    ) -> int: ...

    # keyspace
    async def scan_keys(self, pattern: str) -> list[str]: ...
    async def ping(self) -> bool: ...


def _normalize_range(start: int, stop: int, length: int) -> tuple[int, int] | None:
    """Translate Redis' inclusive, possibly negative, rank range to slice bounds."""
    if start < 0:
        start = max(length + start, 0)
    if stop < 0:
        stop = length + stop
    stop = min(stop, length - 1)
    if start > stop or start >= length:
        return None
    return start, stop + 1


class InMemoryKVStore:
    """Single-process store with Redis semantics.

    Sorted sets order by (score, member) ascending, exactly like Redis,
    so ties between equal scores resolve lexicographically here too.
    Values are kept as strings because that is what a Redis client with
    decode_responses=True hands back.

    Expiry is lazy: a key past its deadline is dropped the next time any
    key is touched.  As in Redis, SET replaces a key and clears its TTL.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._strings: dict[str, str] = {}
        self._hashes: dict[str, dict[str, str]] = {}
        self._zsets: dict[str, dict[str, float]] = {}
        self._deadlines: dict[str, float] = {}

    def clear(self) -> None:
        self._strings.clear()
        self._hashes.clear()
        self._zsets.clear()
        self._deadlines.clear()

    def _evict_expired(self) -> None:
        now = self._clock()
        for key in [k for k, deadline in self._deadlines.items() if deadline <= now]:
            del self._deadlines[key]
            self._strings.pop(key, None)
            self._hashes.pop(key, None)
            self._zsets.pop(key, None)

    def _exists(self, key: str) -> bool:
        return key in self._strings or key in self._hashes or key in self._zsets

    async def get(self, key: str) -> str | None:
        self._evict_expired()
        return self._strings.get(key)

    async def set(self, key: str, value: str | int) -> bool:
        self._evict_expired()
        self._strings[key] = str(value)
        self._deadlines.pop(key, None)
        return True

    async def incr(self, key: str) -> int:
        self._evict_expired()
        value = int(self._strings.get(key, "0")) + 1
        self._strings[key] = str(value)
        return value

    async def decr(self, key: str) -> int:
        self._evict_expired()
        value = int(self._strings.get(key, "0")) - 1
        self._strings[key] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self._evict_expired()
        if not self._exists(key):
            return False
        self._deadlines[key] = self._clock() + seconds
        return True

    async def hset(self, key: str, mapping: dict[str, str]) -> int:
        self._evict_expired()
        record = self._hashes.setdefault(key, {})
        added = sum(1 for field in mapping if field not in record)
        record.update({field: str(value) for field, value in mapping.items()})
        return added

    async def hgetall(self, key: str) -> dict[str, str]:
        self._evict_expired()
        return dict(self._hashes.get(key, {}))

    async def hdel(self, key: str, *fields: str) -> int:
        self._evict_expired()
        record = self._hashes.get(key)
        if record is None:
            return 0
        removed = 0
        for field in fields:
            if record.pop(field, None) is not None:
                removed += 1
        if not record:
            del self._hashes[key]
            self._deadlines.pop(key, None)
        return removed

    async def hincrby(self, key: str, field: str, delta: int = 1) -> int:
        self._evict_expired()
        record = self._hashes.setdefault(key, {})
        value = int(record.get(field, "0")) + delta
        record[field] = str(value)
        return value

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        self._evict_expired()
        zset = self._zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update({member: float(score) for member, score in mapping.items()})
        return added

    async def zincrby(self, key: str, delta: float, member: str) -> float:
        self._evict_expired()
        zset = self._zsets.setdefault(key, {})
        zset[member] = zset.get(member, 0.0) + delta
        return zset[member]

    async def zscore(self, key: str, member: str) -> float | None:
        self._evict_expired()
        return self._zsets.get(key, {}).get(member)

    def _ordered(self, key: str, *, rev: bool = False) -> list[str]:
        zset = self._zsets.get(key, {})
        return [
            member
            for member, _ in sorted(
                zset.items(), key=lambda item: (item[1], item[0]), reverse=rev
            )
        ]

    async def zrange(
        self, key: str, start: int, stop: int, *, rev: bool = False
    ) -> list[str]:
        self._evict_expired()
        members = self._ordered(key, rev=rev)
        bounds = _normalize_range(start, stop, len(members))
        if bounds is None:
            return []
        return members[bounds[0] : bounds[1]]

    async def zrangebyscore(
        self, key: str, min_score: ScoreBound, max_score: ScoreBound
    ) -> list[str]:
        self._evict_expired()
        low, high = float(min_score), float(max_score)
        zset = self._zsets.get(key, {})
        return [m for m in self._ordered(key) if low <= zset[m] <= high]

    async def zremrangebyrank(self, key: str, start: int, stop: int) -> int:
        self._evict_expired()
        members = self._ordered(key)
        bounds = _normalize_range(start, stop, len(members))
        if bounds is None:
            return 0
        doomed = members[bounds[0] : bounds[1]]
        for member in doomed:
            del self._zsets[key][member]
        return len(doomed)

    async def zremrangebyscore(
        self, key: str, min_score: ScoreBound, max_score: ScoreBound
    ) -> int:
        self._evict_expired()
        doomed = await self.zrangebyscore(key, min_score, max_score)
        for member in doomed:
            del self._zsets[key][member]
        return len(doomed)

    async def scan_keys(self, pattern: str) -> list[str]:
        self._evict_expired()
        keys = set(self._strings) | set(self._hashes) | set(self._zsets)
        return sorted(k for k in keys if fnmatch.fnmatchcase(k, pattern))

    async def ping(self) -> bool:
        return True


class NullKVStore:
    """Every read is empty, every write is dropped."""

    async def get(self, key: str) -> str | None:
        return None

    async def set(self, key: str, value: str | int) -> bool:
        return False

    async def incr(self, key: str) -> int:
        return 0

    async def decr(self, key: str) -> int:
        return 0

    async def expire(self, key: str, seconds: int) -> bool:
        return False

    async def hset(self, key: str, mapping: dict[str, str]) -> int:
        return 0

    async def hgetall(self, key: str) -> dict[str, str]:
        return {}

    async def hdel(self, key: str, *fields: str) -> int:
        return 0

    async def hincrby(self, key: str, field: str, delta: int = 1) -> int:
        return 0

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        return 0

    async def zincrby(self, key: str, delta: float, member: str) -> float:
        return 0.0

    async def zscore(self, key: str, member: str) -> float | None:
        return None

    async def zrange(
        self, key: str, start: int, stop: int, *, rev: bool = False
    ) -> list[str]:
        return []

    async def zrangebyscore(
        self, key: str, min_score: ScoreBound, max_score: ScoreBound
    ) -> list[str]:
        return []

    async def zremrangebyrank(self, key: str, start: int, stop: int) -> int:
        return 0

    async def zremrangebyscore(
        self, key: str, min_score: ScoreBound, max_score: ScoreBound
    ) -> int:
        return 0

    async def scan_keys(self, pattern: str) -> list[str]:
        return []

    async def ping(self) -> bool:
        return False


class RedisKVStore:
    """Redis-backed store shared by every API instance.

    Single-key commands (INCR, ZINCRBY, ZADD, ZREMRANGEBYRANK) are atomic
    inside Redis, which is the only concurrency guarantee the services
    depend on.  No MULTI/EXEC transactions are used.
    """

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def _guarded(
        self, operation: str, default: T, call: Callable[[], Awaitable[T]]
    ) -> T:
        try:
            return await call()
        except RedisError:
            KV_STORE_ERRORS.labels(operation=operation).inc()
            logger.warning(
                "kv store %s failed, degrading to %r", operation, default, exc_info=True
            )
            return default

    async def get(self, key: str) -> str | None:
        return await self._guarded("get", None, lambda: self._redis.get(key))

    async def set(self, key: str, value: str | int) -> bool:
        async def _set() -> bool:
            return bool(await self._redis.set(key, value))

        return await self._guarded("set", False, _set)

    async def incr(self, key: str) -> int:
        return await self._guarded("incr", 0, lambda: self._redis.incr(key))

    async def decr(self, key: str) -> int:
        return await self._guarded("decr", 0, lambda: self._redis.decr(key))

    async def expire(self, key: str, seconds: int) -> bool:
        async def _expire() -> bool:
            return bool(await self._redis.expire(key, seconds))

        return await self._guarded("expire", False, _expire)

    async def hset(self, key: str, mapping: dict[str, str]) -> int:
        return await self._guarded(
            "hset", 0, lambda: self._redis.hset(key, mapping=mapping)
        )

    async def hgetall(self, key: str) -> dict[str, str]:
        return await self._guarded("hgetall", {}, lambda: self._redis.hgetall(key))

    async def hdel(self, key: str, *fields: str) -> int:
        return await self._guarded("hdel", 0, lambda: self._redis.hdel(key, *fields))

    async def hincrby(self, key: str, field: str, delta: int = 1) -> int:
        return await self._guarded(
            "hincrby", 0, lambda: self._redis.hincrby(key, field, delta)
        )

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        return await self._guarded("zadd", 0, lambda: self._redis.zadd(key, mapping))

    async def zincrby(self, key: str, delta: float, member: str) -> float:
        return await self._guarded(
            "zincrby", 0.0, lambda: self._redis.zincrby(key, delta, member)
        )

    async def zscore(self, key: str, member: str) -> float | None:
        return await self._guarded("zscore", None, lambda: self._redis.zscore(key, member))

    async def zrange(
        self, key: str, start: int, stop: int, *, rev: bool = False
    ) -> list[str]:
        return await self._guarded(
            "zrange", [], lambda: self._redis.zrange(key, start, stop, desc=rev)
        )

    async def zrangebyscore(
        self, key: str, min_score: ScoreBound, max_score: ScoreBound
    ) -> list[str]:
        return await self._guarded(
            "zrangebyscore",
            [],
            lambda: self._redis.zrangebyscore(key, min_score, max_score),
        )

    async def zremrangebyrank(self, key: str, start: int, stop: int) -> int:
        return await self._guarded(
            "zremrangebyrank", 0, lambda: self._redis.zremrangebyrank(key, start, stop)
        )

    async def zremrangebyscore(
        self, key: str, min_score: ScoreBound, max_score: ScoreBound
    ) -> int:
        return await self._guarded(
            "zremrangebyscore",
            0,
            lambda: self._redis.zremrangebyscore(key, min_score, max_score),
        )

    async def scan_keys(self, pattern: str) -> list[str]:
        # SCAN is cursor-based so Redis keeps serving other clients between
        # batches; KEYS would block the server for the whole keyspace walk.
        async def _scan() -> list[str]:
            found: list[str] = []
            cursor = 0
            while True:
                cursor, keys = await self._redis.scan(cursor, match=pattern, count=100)
                found.extend(keys)
                if cursor == 0:
                    return found

        return await self._guarded("scan", [], _scan)

    async def ping(self) -> bool:
        async def _ping() -> bool:
            return bool(await self._redis.ping())

        return await self._guarded("ping", False, _ping)


def build_kv_store(client=None, *, app_env: str | None = None) -> KVStore:
    """Pick the store implementation once, from configuration."""
    if client is not None:
        return RedisKVStore(client)
    if (app_env or SETTINGS.app_env) == "prod":
        logger.warning("REDIS_URL not configured in prod, engagement data is disabled")
        return NullKVStore()
    return InMemoryKVStore()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

kv_store: KVStore = build_kv_store(redis_pool)
