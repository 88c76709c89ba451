from __future__ import annotations

import logging
import uuid
from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException, status

from signaldesk.api.auth import AuthenticatedUser, require_user
from signaldesk.api.deps import (
    get_cache,
    get_news,
    get_portfolio_store,
    get_resolver,
    get_signal_generator,
    get_signal_repository,
    rate_limit,
)
from signaldesk.cache import Cache, cache_key, utcnow
from signaldesk.config.settings import settings
from signaldesk.db.repositories import SqlPortfolioStore, SqlSignalRepository
from signaldesk.portfolio.performance import build_performance, period_start
from signaldesk.providers.errors import ProviderError
from signaldesk.providers.news import NewsApiAdapter
from signaldesk.providers.resolver import QuoteResolver, normalize_symbol
from signaldesk.schemas.news import NewsArticle, NewsFeed
from signaldesk.schemas.portfolio import (
    Holding,
    PerformancePeriod,
    PortfolioEnvelope,
    PortfolioHistory,
    PortfolioPerformance,
    PortfolioRequest,
    PortfolioResponse,
    PortfolioUpdateRequest,
    RealtimeHolding,
    RealtimePortfolioResponse,
    ValidationResult,
)
from signaldesk.schemas.quotes import (
    BatchQuoteRequest,
    BatchQuoteResponse,
    NormalizedIntraday,
    NormalizedQuote,
)
from signaldesk.schemas.signals import AttributionList, SignalBatch
from signaldesk.signals.generator import PortfolioNotFound, SignalGenerator
from signaldesk.validation.validator import is_valid_symbol, validate_portfolio, validate_symbols

logger = logging.getLogger(__name__)

router = APIRouter()

NO_PORTFOLIO = "No portfolio found. Add holdings first."


def _raise_on_validation_fail(validation: ValidationResult) -> None:
    if validation.status == "fail":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": "Validation failed.",
                "validation": validation.model_dump(),
            },
        )


def _clean_symbols(symbols: list[str]) -> list[str]:
    cleaned = [normalize_symbol(symbol) for symbol in symbols]
    _raise_on_validation_fail(validate_symbols(cleaned))
    return cleaned


def _market_value(holding: Holding, quote: NormalizedQuote) -> float | None:
    if quote.source != "live":
        return None
    return round(holding.shares * quote.price, 2)


def _merge_update(current: PortfolioResponse, updates: PortfolioUpdateRequest) -> PortfolioRequest:
    holdings = current.holdings if updates.holdings is None else updates.holdings
    total_value = updates.total_value
    if total_value is None and updates.holdings is None:
        total_value = current.total_value
    return PortfolioRequest(
        holdings=[holding.model_copy() for holding in holdings],
        total_value=total_value,
        method=updates.method or current.method,
    )


def _normalize_holdings(payload: PortfolioRequest) -> None:
    for holding in payload.holdings:
        holding.symbol = normalize_symbol(holding.symbol)


async def _news_feed(
    cache: Cache, key: str, fetch: Callable[[], Awaitable[list[NewsArticle]]]
) -> NewsFeed:
    cached = await cache.get(key)
    if cached is not None:
        feed = NewsFeed.model_validate(cached)
        feed.cached = True
        return feed

    try:
        articles = await fetch()
    except ProviderError as exc:
        logger.warning("News lookup failed for %s: %s", key, exc)
        return NewsFeed(source="demo", reason=f"News unavailable: {exc}")

    feed = NewsFeed(articles=articles)
    await cache.set(key, feed.model_dump(mode="json"), settings.cache_ttls.news)
    return feed


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get(
    "/stocks/quote/{symbol}",
    response_model=NormalizedQuote,
    dependencies=[Depends(rate_limit("stocks"))],
)
async def get_quote(
    symbol: str,
    user: AuthenticatedUser = Depends(require_user),
    resolver: QuoteResolver = Depends(get_resolver),
) -> NormalizedQuote:
    (cleaned,) = _clean_symbols([symbol])
    return await resolver.resolve_quote(cleaned)


@router.post(
    "/stocks/quotes",
    response_model=BatchQuoteResponse,
    dependencies=[Depends(rate_limit("stocks"))],
)
async def get_quotes(
    payload: BatchQuoteRequest,
    user: AuthenticatedUser = Depends(require_user),
    resolver: QuoteResolver = Depends(get_resolver),
) -> BatchQuoteResponse:
    symbols = [normalize_symbol(symbol) for symbol in payload.symbols]
    valid = list(dict.fromkeys(symbol for symbol in symbols if is_valid_symbol(symbol)))
    resolved = dict(zip(valid, await resolver.resolve_quotes(valid)))

    quotes = []
    for symbol in symbols:
        quote = resolved.get(symbol)
        if quote is None:
            logger.info("Rejected batch symbol %r for %s", symbol, user.id)
            quote = resolver.rejected_quote(symbol, "Invalid symbol format")
        quotes.append(quote)
    return BatchQuoteResponse(quotes=quotes)


@router.get(
    "/stocks/intraday/{symbol}",
    response_model=NormalizedIntraday,
    dependencies=[Depends(rate_limit("stocks"))],
)
async def get_intraday(
    symbol: str,
    user: AuthenticatedUser = Depends(require_user),
    resolver: QuoteResolver = Depends(get_resolver),
) -> NormalizedIntraday:
    (cleaned,) = _clean_symbols([symbol])
    return await resolver.resolve_intraday(cleaned)


@router.get(
    "/signals",
    response_model=SignalBatch,
    dependencies=[Depends(rate_limit("signals"))],
)
async def get_signals(
    user: AuthenticatedUser = Depends(require_user),
    cache: Cache = Depends(get_cache),
    generator: SignalGenerator = Depends(get_signal_generator),
) -> SignalBatch:
    key = cache_key("signals", user.id)
    cached = await cache.get(key)
    if cached is not None:
        batch = SignalBatch.model_validate(cached)
        batch.cached = True
        return batch

    try:
        batch = await generator.generate_signals(user.id)
    except PortfolioNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_PORTFOLIO)

    await cache.set(key, batch.model_dump(mode="json"), settings.signals.response_ttl_seconds)
    return batch


@router.get("/signals/{signal_id}/attributions", response_model=AttributionList)
async def get_signal_attributions(
    signal_id: str,
    user: AuthenticatedUser = Depends(require_user),
    repository: SqlSignalRepository = Depends(get_signal_repository),
) -> AttributionList:
    try:
        parsed = uuid.UUID(signal_id)
    except ValueError:
        # No stored signal can carry a malformed id.
        return AttributionList(signal_id=signal_id)
    attributions = await repository.list_attributions(user.id, parsed)
    return AttributionList(signal_id=signal_id, attributions=attributions)


@router.get(
    "/news/latest",
    response_model=NewsFeed,
    dependencies=[Depends(rate_limit("news"))],
)
async def get_latest_news(
    q: str = "stock market",
    user: AuthenticatedUser = Depends(require_user),
    news: NewsApiAdapter = Depends(get_news),
    cache: Cache = Depends(get_cache),
) -> NewsFeed:
    query = q.strip() or "stock market"
    return await _news_feed(
        cache, cache_key("news", "latest", query.lower()), lambda: news.query(query, page_size=10)
    )


@router.get(
    "/news/portfolio",
    response_model=NewsFeed,
    dependencies=[Depends(rate_limit("news"))],
)
async def get_portfolio_news(
    user: AuthenticatedUser = Depends(require_user),
    news: NewsApiAdapter = Depends(get_news),
    store: SqlPortfolioStore = Depends(get_portfolio_store),
    cache: Cache = Depends(get_cache),
) -> NewsFeed:
    portfolio = await store.get_portfolio(user.id)
    if portfolio is None or not portfolio.holdings:
        return NewsFeed(reason="Portfolio has no holdings")

    symbols = list(dict.fromkeys(holding.symbol for holding in portfolio.holdings))
    return await _news_feed(
        cache,
        cache_key("news", user.id),
        lambda: news.search(symbols, page_size=settings.signals.news_page_size),
    )


@router.post(
    "/portfolio",
    response_model=PortfolioResponse,
    dependencies=[Depends(rate_limit("portfolio"))],
)
async def save_portfolio(
    payload: PortfolioRequest,
    user: AuthenticatedUser = Depends(require_user),
    store: SqlPortfolioStore = Depends(get_portfolio_store),
    cache: Cache = Depends(get_cache),
) -> PortfolioResponse:
    _normalize_holdings(payload)
    _raise_on_validation_fail(validate_portfolio(payload))

    portfolio = await store.save_portfolio(user.id, payload)
    # Drops cached responses only; stored signals are fenced by the portfolio's updated_at.
    await cache.clear_user(user.id)
    logger.info("Saved portfolio v%s for %s", portfolio.version, user.id)
    return portfolio


@router.patch(
    "/portfolio/update",
    response_model=PortfolioResponse,
    dependencies=[Depends(rate_limit("portfolio"))],
)
async def update_portfolio(
    updates: PortfolioUpdateRequest,
    user: AuthenticatedUser = Depends(require_user),
    store: SqlPortfolioStore = Depends(get_portfolio_store),
    cache: Cache = Depends(get_cache),
) -> PortfolioResponse:
    current = await store.get_portfolio(user.id)
    if current is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_PORTFOLIO)

    payload = _merge_update(current, updates)
    _normalize_holdings(payload)
    _raise_on_validation_fail(validate_portfolio(payload))

    portfolio = await store.update_portfolio(user.id, payload)
    if portfolio is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_PORTFOLIO)
    await cache.clear_user(user.id)
    logger.info("Updated portfolio to v%s for %s", portfolio.version, user.id)
    return portfolio


@router.delete("/portfolio/delete", dependencies=[Depends(rate_limit("portfolio"))])
async def delete_portfolio(
    user: AuthenticatedUser = Depends(require_user),
    store: SqlPortfolioStore = Depends(get_portfolio_store),
    cache: Cache = Depends(get_cache),
) -> dict:
    if not await store.delete_portfolio(user.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_PORTFOLIO)
    await cache.clear_user(user.id)
    logger.info("Deleted portfolio for %s", user.id)
    return {"success": True, "message": "Portfolio deleted"}


@router.get("/portfolio", response_model=PortfolioEnvelope)
async def get_portfolio(
    user: AuthenticatedUser = Depends(require_user),
    store: SqlPortfolioStore = Depends(get_portfolio_store),
) -> PortfolioEnvelope:
    return PortfolioEnvelope(portfolio=await store.get_portfolio(user.id))


@router.get(
    "/portfolio/history",
    response_model=PortfolioHistory,
    dependencies=[Depends(rate_limit("default"))],
)
async def get_portfolio_history(
    user: AuthenticatedUser = Depends(require_user),
    store: SqlPortfolioStore = Depends(get_portfolio_store),
) -> PortfolioHistory:
    return PortfolioHistory(history=await store.list_history(user.id, limit=10))


@router.get(
    "/portfolio/performance",
    response_model=PortfolioPerformance,
    dependencies=[Depends(rate_limit("default"))],
)
async def get_portfolio_performance(
    period: PerformancePeriod = "1M",
    user: AuthenticatedUser = Depends(require_user),
    store: SqlPortfolioStore = Depends(get_portfolio_store),
    resolver: QuoteResolver = Depends(get_resolver),
    cache: Cache = Depends(get_cache),
) -> PortfolioPerformance:
    key = cache_key("performance", user.id, period)
    cached = await cache.get(key)
    if cached is not None:
        performance = PortfolioPerformance.model_validate(cached)
        performance.cached = True
        return performance

    portfolio = await store.get_portfolio(user.id)
    if portfolio is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_PORTFOLIO)

    now = utcnow()
    history = await store.list_history(user.id, limit=None, since=period_start(period, now))
    quotes = await resolver.resolve_quotes([holding.symbol for holding in portfolio.holdings])
    performance = build_performance(portfolio, history, quotes, period, now)

    ttl = settings.cache_ttls.performance
    if performance.source != "live":
        ttl = settings.cache_ttls.demo
    await cache.set(key, performance.model_dump(mode="json"), ttl)
    return performance


@router.get(
    "/portfolio/realtime",
    response_model=RealtimePortfolioResponse,
    dependencies=[Depends(rate_limit("stocks"))],
)
async def get_portfolio_realtime(
    user: AuthenticatedUser = Depends(require_user),
    store: SqlPortfolioStore = Depends(get_portfolio_store),
    resolver: QuoteResolver = Depends(get_resolver),
) -> RealtimePortfolioResponse:
    portfolio = await store.get_portfolio(user.id)
    if portfolio is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_PORTFOLIO)

    quotes = await resolver.resolve_quotes([holding.symbol for holding in portfolio.holdings])
    holdings = [
        RealtimeHolding(
            symbol=quote.symbol,
            shares=holding.shares,
            avg_cost=holding.avg_cost,
            market_value=_market_value(holding, quote),
            quote=quote,
        )
        for holding, quote in zip(portfolio.holdings, quotes)
    ]
    values = [holding.market_value for holding in holdings if holding.market_value is not None]
    return RealtimePortfolioResponse(
        holdings=holdings,
        total_market_value=round(sum(values), 2) if values else None,
    )


@router.post("/cache/clear")
async def clear_cache(
    user: AuthenticatedUser = Depends(require_user),
    cache: Cache = Depends(get_cache),
) -> dict:
    removed = await cache.clear_user(user.id)
    return {"cleared": removed}
