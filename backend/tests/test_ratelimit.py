import asyncio
import datetime

from signaldesk.config.settings import RateLimitSettings
from signaldesk.ratelimit import MemoryRateLimiter, RedisRateLimiter, rate_limit_key

NOW = datetime.datetime(2026, 1, 5, 15, 30, tzinfo=datetime.UTC)


class FakeRedis:
    def __init__(self) -> None:
        self.counters: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    async def incr(self, key: str) -> int:
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True

    async def ttl(self, key: str) -> int:
        return self.ttls.get(key, -1)


class BrokenRedis:
    async def incr(self, key: str) -> int:
        raise ConnectionError("redis down")


class FakeClock:
    def __init__(self) -> None:
        self.now = NOW

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += datetime.timedelta(seconds=seconds)


def test_key_layout() -> None:
    assert rate_limit_key("stocks", "user-1") == "ratelimit:stocks:user-1"


def test_limits_fall_back_to_default() -> None:
    config = RateLimitSettings()

    assert config.limit_for("stocks") == 30
    assert config.limit_for("signals") == 10
    assert config.limit_for("anything-else") == 100


def test_redis_limiter_counts_within_window() -> None:
    fake = FakeRedis()
    limiter = RedisRateLimiter(
        "redis://unused", RateLimitSettings(limits={"stocks": 2}), client=fake, clock=FakeClock()
    )

    results = [asyncio.run(limiter.check("user-1", "stocks")) for _ in range(3)]

    assert [result.allowed for result in results] == [True, True, False]
    assert [result.remaining for result in results] == [1, 0, 0]
    assert results[2].reset_at == NOW + datetime.timedelta(seconds=60)
    assert results[2].limit == 2
    assert fake.ttls == {"ratelimit:stocks:user-1": 60}


def test_redis_limiter_restores_missing_expiry() -> None:
    fake = FakeRedis()
    fake.counters["ratelimit:news:user-1"] = 4
    limiter = RedisRateLimiter("redis://unused", client=fake, clock=FakeClock())

    result = asyncio.run(limiter.check("user-1", "news"))

    assert result.allowed is True
    assert fake.ttls["ratelimit:news:user-1"] == 60


def test_redis_limiter_fails_open() -> None:
    limiter = RedisRateLimiter("redis://unused", client=BrokenRedis(), clock=FakeClock())

    result = asyncio.run(limiter.check("user-1", "stocks"))

    assert result.allowed is True
    assert result.remaining == 30


def test_memory_limiter_resets_after_window() -> None:
    clock = FakeClock()
    limiter = MemoryRateLimiter(RateLimitSettings(limits={"portfolio": 1}), clock=clock)

    assert asyncio.run(limiter.check("user-1", "portfolio")).allowed is True
    assert asyncio.run(limiter.check("user-1", "portfolio")).allowed is False
    # Separate users and scopes keep separate windows.
    assert asyncio.run(limiter.check("user-2", "portfolio")).allowed is True
    assert asyncio.run(limiter.check("user-1", "stocks")).allowed is True

    clock.advance(60)

    assert asyncio.run(limiter.check("user-1", "portfolio")).allowed is True
