"""Redis-backed sliding-window scan quota.

Each quota identifier (an authenticated user id, or a hashed client IP for
anonymous callers) owns one sorted set whose members are consumption events
scored by their timestamp in milliseconds. Entries at or before
``now - window`` are pruned lazily on every mutating call; read-only checks
filter by score instead of pruning.

Behaviour
---------
- Caps default to 3 scans/hour for anonymous callers and 20 scans/hour for
  authenticated users.
- If Redis is **unavailable** every check fails open: the request is treated
  as allowed and the error is logged, never reported to the caller.
- :meth:`QuotaTracker.refund` removes the most recent entry. Consumption and
  refund are paired 1:1 within one scan, so this undoes that scan's charge
  unless another consumption for the same identifier interleaves.

Redis key format
----------------
``repolens:quota:{identifier}``
"""
from __future__ import annotations

import logging
import math
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from prometheus_client import Counter
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

DEFAULT_ANONYMOUS_MAX: int = 3
DEFAULT_AUTHENTICATED_MAX: int = 20
DEFAULT_WINDOW_SECONDS: int = 3600

_KEY_PREFIX = "repolens:quota"

quota_refunds_total = Counter(
    "repolens_quota_refunds_total",
    "Scan quota entries returned after a refundable failure",
)
quota_store_errors_total = Counter(
    "repolens_quota_store_errors_total",
    "Quota store failures that were resolved by failing open",
    ["operation"],
)


def _build_key(identifier: str) -> str:
    """Return the Redis sorted-set key for a quota identifier."""
    return f"{_KEY_PREFIX}:{identifier}"


@dataclass(frozen=True)
class QuotaStatus:
    allowed: bool
    remaining: int
    reset_at: datetime
    limit: int
    used: int


class QuotaTracker:
    """Sliding-window quota per identifier.

    Parameters
    ----------
    redis_client:
        Async Redis client (``decode_responses`` may be on or off).
    anonymous_max / authenticated_max:
        Caps applied per window to anonymous and authenticated identifiers.
    window_seconds:
        Sliding window horizon.
    clock:
        Returns the current Unix time in seconds; injectable for tests.
    """

    def __init__(
        self,
        redis_client: Redis,
        anonymous_max: int = DEFAULT_ANONYMOUS_MAX,
        authenticated_max: int = DEFAULT_AUTHENTICATED_MAX,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis_client
        self._anonymous_max = anonymous_max
        self._authenticated_max = authenticated_max
        self._window_ms = int(window_seconds * 1000)
        self._clock = clock

    def limit_for(self, is_authenticated: bool) -> int:
        return self._authenticated_max if is_authenticated else self._anonymous_max

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _reset_at(self, oldest_ms: float | None, now_ms: int) -> datetime:
        anchor = oldest_ms if oldest_ms is not None else now_ms
        return datetime.fromtimestamp((anchor + self._window_ms) / 1000, tz=timezone.utc)

    def _fail_open(self, operation: str, identifier: str, exc: Exception, limit: int, consumed: bool) -> QuotaStatus:
        quota_store_errors_total.labels(operation=operation).inc()
        logger.warning(
            "Quota store error during %s for %s; allowing request: %s",
            operation,
            identifier,
            exc,
        )
        now_ms = self._now_ms()
        return QuotaStatus(
            allowed=True,
            remaining=limit - 1 if consumed else limit,
            reset_at=self._reset_at(None, now_ms),
            limit=limit,
            used=0,
        )

    async def check_and_consume(self, identifier: str, is_authenticated: bool) -> QuotaStatus:
        """Record one scan for *identifier* if it is under its cap."""
        limit = self.limit_for(is_authenticated)
        key = _build_key(identifier)
        now_ms = self._now_ms()

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, 0, now_ms - self._window_ms)
                pipe.zrange(key, 0, -1, withscores=True)
                _, entries = await pipe.execute()

            used = len(entries)
            oldest = float(entries[0][1]) if entries else None
            if used >= limit:
                return QuotaStatus(
                    allowed=False,
                    remaining=0,
                    reset_at=self._reset_at(oldest, now_ms),
                    limit=limit,
                    used=used,
                )

            await self._append(key, now_ms)
        except RedisError as exc:
            return self._fail_open("check_and_consume", identifier, exc, limit, consumed=True)

        used += 1
        return QuotaStatus(
            allowed=True,
            remaining=max(0, limit - used),
            reset_at=self._reset_at(oldest if oldest is not None else now_ms, now_ms),
            limit=limit,
            used=used,
        )

    async def check_only(self, identifier: str, is_authenticated: bool) -> QuotaStatus:
        """Report the quota for *identifier* without modifying the store."""
        limit = self.limit_for(is_authenticated)
        key = _build_key(identifier)
        now_ms = self._now_ms()

        try:
            entries = await self._redis.zrangebyscore(
                key, f"({now_ms - self._window_ms}", "+inf", withscores=True
            )
        except RedisError as exc:
            return self._fail_open("check_only", identifier, exc, limit, consumed=False)

        used = len(entries)
        oldest = float(entries[0][1]) if entries else None
        return QuotaStatus(
            allowed=used < limit,
            remaining=max(0, limit - used),
            reset_at=self._reset_at(oldest, now_ms),
            limit=limit,
            used=used,
        )

    async def consume(self, identifier: str) -> bool:
        """Unconditionally record one scan for *identifier*.

        Used after a separate :meth:`check_only` has already admitted the
        scan. Returns ``False`` (and logs) when the store is unavailable.
        """
        key = _build_key(identifier)
        now_ms = self._now_ms()
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, 0, now_ms - self._window_ms)
                await pipe.execute()
            await self._append(key, now_ms)
        except RedisError as exc:
            quota_store_errors_total.labels(operation="consume").inc()
            logger.warning("Quota store error while consuming for %s: %s", identifier, exc)
            return False
        return True

    async def refund(self, identifier: str) -> bool:
        """Remove the most recently recorded scan for *identifier*.

        Returns ``True`` if an entry was removed.
        """
        key = _build_key(identifier)
        try:
            popped = await self._redis.zpopmax(key, 1)
        except RedisError as exc:
            quota_store_errors_total.labels(operation="refund").inc()
            logger.warning("Quota store error while refunding %s: %s", identifier, exc)
            return False

        if not popped:
            logger.info("No quota entry to refund for %s", identifier)
            return False
        quota_refunds_total.inc()
        logger.info("Refunded one scan to %s", identifier)
        return True

    async def _append(self, key: str, now_ms: int) -> None:
        # Unique member so two scans in the same millisecond both count
        member = f"{now_ms}-{uuid.uuid4().hex[:12]}"
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zadd(key, {member: now_ms})
            pipe.expire(key, math.ceil(self._window_ms / 1000) + 1)
            await pipe.execute()
