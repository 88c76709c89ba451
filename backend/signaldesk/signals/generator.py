from __future__ import annotations

import datetime
import logging
from typing import Callable, Protocol

from signaldesk.cache import utcnow
from signaldesk.config.settings import SignalSettings
from signaldesk.db.repositories import PortfolioStore, SignalRepository
from signaldesk.providers.resolver import QuoteResolver, normalize_symbol
from signaldesk.schemas.news import NewsArticle
from signaldesk.schemas.quotes import NormalizedQuote
from signaldesk.schemas.signals import AlphaSignal, SignalBatch
from signaldesk.signals.scoring import (
    build_insight,
    classify_direction,
    compute_confidence,
    match_articles,
    time_horizon,
    to_attribution,
)


logger = logging.getLogger(__name__)


class PortfolioNotFound(Exception):
    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"No portfolio for user {user_id}")


class NewsSearch(Protocol):
    async def search(self, symbols: list[str], page_size: int = 20) -> list[NewsArticle]: ...


def _batch_provenance(signals: list[AlphaSignal]) -> tuple[str, str]:
    if not signals:
        return "live", "none"
    if any(signal.source == "demo" for signal in signals):
        return "demo", "demo"
    providers = {signal.provider for signal in signals}
    return "live", providers.pop() if len(providers) == 1 else "mixed"


def _cooldown_batch(recent: list[AlphaSignal]) -> SignalBatch:
    source, provider = _batch_provenance(recent)
    if any(signal.batch_source == "demo" for signal in recent):
        source = "demo"
    reasons = ["Signals generated within the cooldown window"]
    reasons.extend(dict.fromkeys(signal.batch_reason for signal in recent if signal.batch_reason))
    return SignalBatch(
        signals=recent,
        source=source,
        provider=provider,
        reason="; ".join(reasons),
        cached=True,
    )


class SignalGenerator:
    def __init__(
        self,
        resolver: QuoteResolver,
        news: NewsSearch,
        portfolios: PortfolioStore,
        repository: SignalRepository,
        config: SignalSettings | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self.resolver = resolver
        self.news = news
        self.portfolios = portfolios
        self.repository = repository
        self.config = config or SignalSettings()
        self._clock = clock

    async def generate_signals(self, user_id: str) -> SignalBatch:
        portfolio = await self.portfolios.get_portfolio(user_id)
        if portfolio is None:
            raise PortfolioNotFound(user_id)

        since = self._clock() - datetime.timedelta(seconds=self.config.cooldown_seconds)
        if portfolio.updated_at is not None and portfolio.updated_at > since:
            # Rows generated before the last portfolio change describe old holdings.
            since = portfolio.updated_at
        recent = await self.repository.recent_signals(user_id, since)
        if recent:
            return _cooldown_batch(recent)

        symbols = list(dict.fromkeys(normalize_symbol(h.symbol) for h in portfolio.holdings))
        symbols = [symbol for symbol in symbols if symbol][: self.config.max_symbols]
        if not symbols:
            return SignalBatch(reason="Portfolio has no holdings")

        reasons: list[str] = []
        try:
            articles = await self.news.search(symbols, page_size=self.config.news_page_size)
            news_ok = True
        except Exception as exc:
            logger.warning("News search failed for %s: %s", user_id, exc)
            articles = []
            news_ok = False
            reasons.append(f"News unavailable: {exc}")

        quotes = await self.resolver.resolve_quotes(symbols)
        demo_symbols = [quote.symbol for quote in quotes if quote.source == "demo"]
        if demo_symbols:
            reasons.append("Demo quotes for " + ", ".join(demo_symbols))
        batch_source = "live" if news_ok and not demo_symbols else "demo"
        batch_reason = "; ".join(reasons) or None

        signals: list[AlphaSignal] = []
        for quote in quotes:
            signal = self._build_signal(user_id, quote, articles)
            signal.batch_source = batch_source
            signal.batch_reason = batch_reason
            saved = await self.repository.save_signal(signal)
            if saved is not None:
                signals.append(saved)

        source, provider = _batch_provenance(signals)
        return SignalBatch(
            signals=signals,
            source="demo" if batch_source == "demo" else source,
            provider=provider,
            reason=batch_reason,
        )

    def _build_signal(
        self, user_id: str, quote: NormalizedQuote, articles: list[NewsArticle]
    ) -> AlphaSignal:
        matches = match_articles(quote.symbol, articles)
        threshold = self.config.direction_threshold
        direction = classify_direction(quote.change_percent, threshold)
        return AlphaSignal(
            user_id=user_id,
            asset=quote.symbol,
            direction=direction,
            confidence=compute_confidence(quote.change_percent, bool(matches), self.config),
            time_horizon=time_horizon(quote.change_percent, threshold),
            insight=build_insight(quote, direction, len(matches)),
            sources=len(matches),
            category="Price Action + News" if matches else "Price Action",
            source=quote.source,
            provider=quote.provider,
            created_at=self._clock(),
            attributions=[
                to_attribution(article) for article in matches[: self.config.max_attributions]
            ],
        )
