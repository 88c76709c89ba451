from __future__ import annotations

from functools import lru_cache
from typing import Awaitable, Callable

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.api.auth import AuthenticatedUser, require_user
from signaldesk.cache import Cache, build_cache
from signaldesk.config.settings import settings
from signaldesk.db.repositories import SqlPortfolioStore, SqlSignalRepository
from signaldesk.db.session import get_session
from signaldesk.providers.news import NewsApiAdapter
from signaldesk.providers.resolver import QuoteResolver
from signaldesk.ratelimit import RateLimiter, build_rate_limiter
from signaldesk.signals.generator import SignalGenerator


@lru_cache
def get_cache() -> Cache:
    return build_cache(settings)


@lru_cache
def get_rate_limiter() -> RateLimiter:
    return build_rate_limiter(settings)


def rate_limit(scope: str) -> Callable[..., Awaitable[None]]:
    """Dependency factory enforcing the per-user limit configured for ``scope``."""

    async def check_rate_limit(
        user: AuthenticatedUser = Depends(require_user),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> None:
        if not settings.rate_limits.enabled:
            return
        result = await limiter.check(user.id, scope)
        if not result.allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "error": "Rate limit exceeded",
                    "resetAt": result.reset_at.isoformat(),
                },
                headers={"X-RateLimit-Limit": str(result.limit)},
            )

    return check_rate_limit


def get_resolver(cache: Cache = Depends(get_cache)) -> QuoteResolver:
    return QuoteResolver.from_settings(settings, cache)


def get_news() -> NewsApiAdapter:
    return NewsApiAdapter.from_settings(settings.providers)


def get_portfolio_store(db: AsyncSession = Depends(get_session)) -> SqlPortfolioStore:
    return SqlPortfolioStore(db)


def get_signal_repository(db: AsyncSession = Depends(get_session)) -> SqlSignalRepository:
    return SqlSignalRepository(db)


def get_signal_generator(
    resolver: QuoteResolver = Depends(get_resolver),
    news: NewsApiAdapter = Depends(get_news),
    portfolios: SqlPortfolioStore = Depends(get_portfolio_store),
    repository: SqlSignalRepository = Depends(get_signal_repository),
) -> SignalGenerator:
    return SignalGenerator(resolver, news, portfolios, repository, settings.signals)
