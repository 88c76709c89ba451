from __future__ import annotations

import datetime
import json
import logging
from typing import Any, Callable, Protocol

from pydantic import BaseModel
from redis.asyncio import Redis

from signaldesk.config.settings import Settings


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime.datetime]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def cache_key(kind: str, *parts: str) -> str:
    return ":".join([kind, *parts])


class CacheEntry(BaseModel):
    key: str
    value: Any
    expires_at: datetime.datetime

    def is_expired(self, now: datetime.datetime) -> bool:
        return self.expires_at <= now


class Cache(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def clear_user(self, user_id: str) -> int: ...


class RedisCache:
    """Key/value cache on Redis. Reads fail open, writes are best effort.

    Entries live under the ``cache:`` namespace and ``clear_user`` only scans
    that namespace. Rate limit counters share the server and must survive it.
    """

    namespace = "cache"

    def __init__(
        self,
        redis_url: str,
        client: Redis | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._redis_url = redis_url
        self._client = client
        self._clock = clock

    def _get_client(self) -> Redis:
        if self._client is None:
            self._client = Redis.from_url(self._redis_url)
        return self._client

    def _namespaced(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._get_client().get(self._namespaced(key))
        except Exception:
            logger.warning("Cache read failed for %s", key, exc_info=True)
            return None

        if not raw:
            return None

        try:
            entry = CacheEntry.model_validate(json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValueError):
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

        if entry.is_expired(self._clock()):
            return None
        return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        entry = CacheEntry(
            key=key,
            value=value,
            expires_at=self._clock() + datetime.timedelta(seconds=ttl_seconds),
        )
        try:
            await self._get_client().setex(
                self._namespaced(key), ttl_seconds, entry.model_dump_json()
            )
        except Exception:
            logger.warning("Cache write failed for %s", key, exc_info=True)

    async def clear_user(self, user_id: str) -> int:
        client = self._get_client()
        removed = 0
        try:
            for pattern in (
                self._namespaced(f"*:{user_id}"),
                self._namespaced(f"*:{user_id}:*"),
            ):
                async for key in client.scan_iter(match=pattern):
                    removed += int(await client.delete(key))
        except Exception:
            logger.warning("Cache clear failed for user %s", user_id, exc_info=True)
        return removed


class MemoryCache:
    """In-process cache with the same expiry semantics as RedisCache."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._clock = clock

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            expires_at=self._clock() + datetime.timedelta(seconds=ttl_seconds),
        )

    async def clear_user(self, user_id: str) -> int:
        doomed = [key for key in self._entries if user_id in key.split(":")[1:]]
        for key in doomed:
            del self._entries[key]
        return len(doomed)


def build_cache(settings: Settings) -> Cache:
    if settings.cache_backend == "memory":
        return MemoryCache()
    return RedisCache(settings.redis_url)
