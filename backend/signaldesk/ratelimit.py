"""Per-user, per-scope fixed window rate limiting.

Counters are keyed ``ratelimit:<scope>:<user>``. A window opens on the first
request and every request in it counts, rejected ones included. Backend
failures fail open.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Protocol

from redis.asyncio import Redis

from signaldesk.cache import Clock, utcnow
from signaldesk.config.settings import RateLimitSettings, Settings


logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "ratelimit"


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime.datetime
    limit: int


def rate_limit_key(scope: str, user_id: str) -> str:
    return f"{RATE_LIMIT_PREFIX}:{scope}:{user_id}"


def _result(count: int, limit: int, reset_at: datetime.datetime) -> RateLimitResult:
    return RateLimitResult(
        allowed=count <= limit,
        remaining=max(limit - count, 0),
        reset_at=reset_at,
        limit=limit,
    )


class RateLimiter(Protocol):
    async def check(self, user_id: str, scope: str) -> RateLimitResult: ...


class RedisRateLimiter:
    def __init__(
        self,
        redis_url: str,
        config: RateLimitSettings | None = None,
        client: Redis | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._redis_url = redis_url
        self.config = config or RateLimitSettings()
        self._client = client
        self._clock = clock

    def _get_client(self) -> Redis:
        if self._client is None:
            self._client = Redis.from_url(self._redis_url)
        return self._client

    async def check(self, user_id: str, scope: str) -> RateLimitResult:
        limit = self.config.limit_for(scope)
        window = self.config.window_seconds
        key = rate_limit_key(scope, user_id)
        now = self._clock()
        try:
            client = self._get_client()
            count = await client.incr(key)
            if count == 1:
                await client.expire(key, window)
            ttl = await client.ttl(key)
            if ttl < 0:
                # Counter without an expiry, e.g. the EXPIRE after INCR was lost.
                await client.expire(key, window)
                ttl = window
        except Exception as exc:
            logger.error("Rate limit check failed for %s: %s", key, exc)
            return RateLimitResult(
                allowed=True,
                remaining=limit,
                reset_at=now + datetime.timedelta(seconds=window),
                limit=limit,
            )
        return _result(int(count), limit, now + datetime.timedelta(seconds=ttl))


class MemoryRateLimiter:
    """In-process limiter with the same window semantics as RedisRateLimiter."""

    def __init__(self, config: RateLimitSettings | None = None, clock: Clock = utcnow) -> None:
        self.config = config or RateLimitSettings()
        self._clock = clock
        self._windows: dict[str, tuple[int, datetime.datetime]] = {}

    async def check(self, user_id: str, scope: str) -> RateLimitResult:
        limit = self.config.limit_for(scope)
        key = rate_limit_key(scope, user_id)
        now = self._clock()
        count, reset_at = self._windows.get(key, (0, now))
        if reset_at <= now:
            count, reset_at = 0, now + datetime.timedelta(seconds=self.config.window_seconds)
        count += 1
        self._windows[key] = (count, reset_at)
        return _result(count, limit, reset_at)


def build_rate_limiter(settings: Settings) -> RateLimiter:
    if settings.cache_backend == "memory":
        return MemoryRateLimiter(settings.rate_limits)
    return RedisRateLimiter(settings.redis_url, settings.rate_limits)
