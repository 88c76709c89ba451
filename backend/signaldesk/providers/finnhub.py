from __future__ import annotations

import asyncio
import datetime
from typing import Any, Callable

from signaldesk.config.settings import ProviderSettings
from signaldesk.providers.errors import ProviderDataError, ProviderNotConfigured
from signaldesk.providers.http import build_url, get_json
from signaldesk.schemas.quotes import Candle, NormalizedIntraday, NormalizedQuote


_QUOTE_PATH = "/api/v1/quote"
_CANDLE_PATH = "/api/v1/stock/candle"
_INTRADAY_WINDOW = datetime.timedelta(days=1)


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class FinnhubAdapter:
    """Primary quote provider."""

    name = "finnhub"
    provider = "primary"

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://finnhub.io",
        timeout: float = 10,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._clock = clock or (lambda: datetime.datetime.now(datetime.UTC))

    @classmethod
    def from_settings(cls, providers: ProviderSettings) -> FinnhubAdapter:
        return cls(
            providers.primary_api_key,
            base_url=providers.finnhub_base_url,
            timeout=providers.timeout_seconds,
        )

    def _require_key(self) -> str:
        if not self.api_key:
            raise ProviderNotConfigured(self.name)
        return self.api_key

    async def _get(self, path: str, params: dict[str, str]) -> Any:
        url = build_url(self.base_url, path, {**params, "token": self._require_key()})
        return await asyncio.to_thread(get_json, self.name, url, None, self.timeout)

    async def fetch_quote(self, symbol: str) -> NormalizedQuote:
        payload = await self._get(_QUOTE_PATH, {"symbol": symbol})
        if not isinstance(payload, dict):
            raise ProviderDataError(self.name, "quote payload is not an object")

        price = _as_float(payload.get("c"))
        if not price:
            raise ProviderDataError(self.name, f"no price for {symbol}")

        return NormalizedQuote(
            source="live",
            provider=self.provider,
            as_of=self._clock(),
            symbol=symbol,
            price=price,
            change=_as_float(payload.get("d")) or 0.0,
            change_percent=_as_float(payload.get("dp")) or 0.0,
            open=_as_float(payload.get("o")),
            high=_as_float(payload.get("h")),
            low=_as_float(payload.get("l")),
            previous_close=_as_float(payload.get("pc")),
        )

    async def fetch_intraday(self, symbol: str) -> NormalizedIntraday:
        now = self._clock()
        payload = await self._get(
            _CANDLE_PATH,
            {
                "symbol": symbol,
                "resolution": "5",
                "from": str(int((now - _INTRADAY_WINDOW).timestamp())),
                "to": str(int(now.timestamp())),
            },
        )
        if not isinstance(payload, dict):
            raise ProviderDataError(self.name, "candle payload is not an object")
        if payload.get("s") != "ok":
            raise ProviderDataError(self.name, f"no candles for {symbol}")

        times = payload.get("t") or []
        opens = payload.get("o") or []
        highs = payload.get("h") or []
        lows = payload.get("l") or []
        closes = payload.get("c") or []
        volumes = payload.get("v") or [None] * len(times)
        if not all(isinstance(series, list) for series in (times, opens, highs, lows, closes)):
            raise ProviderDataError(self.name, "candle series are malformed")

        candles: list[Candle] = []
        for ts_value, open_, high, low, close, volume in zip(
            times, opens, highs, lows, closes, volumes
        ):
            prices = [_as_float(value) for value in (open_, high, low, close)]
            if not isinstance(ts_value, (int, float)) or any(p is None for p in prices):
                continue
            candles.append(
                Candle(
                    timestamp=datetime.datetime.fromtimestamp(int(ts_value), tz=datetime.UTC),
                    open=prices[0],
                    high=prices[1],
                    low=prices[2],
                    close=prices[3],
                    volume=_as_float(volume),
                )
            )
        if not candles:
            raise ProviderDataError(self.name, f"no candles for {symbol}")

        candles.sort(key=lambda candle: candle.timestamp)
        return NormalizedIntraday(
            source="live",
            provider=self.provider,
            as_of=now,
            symbol=symbol,
            interval="5min",
            candles=candles,
        )
