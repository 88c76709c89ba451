"""Quote resolution: cache, then primary, then secondary, then a demo value.

Every value returned from here carries ``source``/``provider`` so callers can
tell live data from the synthetic fallback. Provider failures never escape.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Awaitable, Callable, Protocol, TypeVar

from pydantic import BaseModel

from signaldesk.cache import Cache, cache_key, utcnow
from signaldesk.config.settings import CacheTTLSettings, Settings
from signaldesk.providers.alphavantage import AlphaVantageAdapter
from signaldesk.providers.finnhub import FinnhubAdapter
from signaldesk.schemas.quotes import NormalizedIntraday, NormalizedQuote


logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", NormalizedQuote, NormalizedIntraday)


class QuoteProvider(Protocol):
    name: str
    provider: str

    async def fetch_quote(self, symbol: str) -> NormalizedQuote: ...

    async def fetch_intraday(self, symbol: str) -> NormalizedIntraday: ...


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


class QuoteResolver:
    def __init__(
        self,
        primary: QuoteProvider,
        secondary: QuoteProvider,
        cache: Cache,
        ttls: CacheTTLSettings | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self.cache = cache
        self.ttls = ttls or CacheTTLSettings()
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, cache: Cache) -> QuoteResolver:
        return cls(
            FinnhubAdapter.from_settings(settings.providers),
            AlphaVantageAdapter.from_settings(settings.providers),
            cache,
            settings.cache_ttls,
        )

    async def resolve_quote(self, symbol: str) -> NormalizedQuote:
        symbol = normalize_symbol(symbol)
        return await self._resolve(
            cache_key("quote", symbol),
            symbol,
            NormalizedQuote,
            (self.primary.fetch_quote, self.ttls.quote_primary),
            (self.secondary.fetch_quote, self.ttls.quote_secondary),
            self._demo_quote,
        )

    async def resolve_intraday(self, symbol: str) -> NormalizedIntraday:
        symbol = normalize_symbol(symbol)
        return await self._resolve(
            cache_key("intraday", symbol),
            symbol,
            NormalizedIntraday,
            (self.primary.fetch_intraday, self.ttls.intraday_primary),
            (self.secondary.fetch_intraday, self.ttls.intraday_secondary),
            self._demo_intraday,
        )

    async def resolve_quotes(self, symbols: list[str]) -> list[NormalizedQuote]:
        # gather keeps input order even though lookups finish in any order.
        return list(await asyncio.gather(*(self.resolve_quote(symbol) for symbol in symbols)))

    def rejected_quote(self, symbol: str, reason: str) -> NormalizedQuote:
        """Demo entry for a symbol that was never looked up. Nothing is cached."""
        return self._demo_quote(symbol, reason)

    async def _resolve(
        self,
        key: str,
        symbol: str,
        model: type[ResultT],
        primary: tuple[Callable[[str], Awaitable[ResultT]], int],
        secondary: tuple[Callable[[str], Awaitable[ResultT]], int],
        demo_factory: Callable[[str, str], ResultT],
    ) -> ResultT:
        cached = await self.cache.get(key)
        if cached is not None:
            try:
                return model.model_validate(cached)
            except ValueError:
                logger.warning("Ignoring malformed cache entry %s", key)

        failures: list[str] = []
        for adapter, (fetch, ttl) in zip((self.primary, self.secondary), (primary, secondary)):
            try:
                result = await fetch(symbol)
            except Exception as exc:
                logger.warning(
                    "%s provider %s failed for %s: %s", adapter.provider, adapter.name, symbol, exc
                )
                failures.append(f"{adapter.provider} ({adapter.name}): {exc}")
                continue
            await self._store(key, result, ttl)
            return result

        reason = "Live quote unavailable: " + "; ".join(failures)
        logger.info("Serving demo data for %s", symbol)
        result = demo_factory(symbol, reason)
        await self._store(key, result, self.ttls.demo)
        return result

    async def _store(self, key: str, value: BaseModel, ttl: int) -> None:
        await self.cache.set(key, value.model_dump(mode="json"), ttl)

    def _demo_quote(self, symbol: str, reason: str) -> NormalizedQuote:
        return NormalizedQuote(
            source="demo",
            provider="demo",
            as_of=self._clock(),
            symbol=symbol,
            price=0.0,
            change=0.0,
            change_percent=0.0,
            reason=reason,
        )

    def _demo_intraday(self, symbol: str, reason: str) -> NormalizedIntraday:
        return NormalizedIntraday(
            source="demo",
            provider="demo",
            as_of=self._clock(),
            symbol=symbol,
            candles=[],
            reason=reason,
        )
