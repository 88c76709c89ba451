from __future__ import annotations

import asyncio
import datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

from signaldesk.config.settings import ProviderSettings
from signaldesk.providers.errors import ProviderDataError, ProviderNotConfigured
from signaldesk.providers.http import build_url, get_json
from signaldesk.schemas.quotes import Candle, NormalizedIntraday, NormalizedQuote


_QUERY_PATH = "/query"
_INTERVAL = "5min"
_SERIES_KEY = f"Time Series ({_INTERVAL})"
# Intraday timestamps are exchange-local and carry no offset.
_EXCHANGE_TZ = ZoneInfo("America/New_York")


def _parse_number(raw: Any) -> float | None:
    if raw is None:
        return None
    cleaned = str(raw).strip().rstrip("%")
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


class AlphaVantageAdapter:
    """Secondary quote provider."""

    name = "alphavantage"
    provider = "secondary"

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://www.alphavantage.co",
        timeout: float = 10,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._clock = clock or (lambda: datetime.datetime.now(datetime.UTC))

    @classmethod
    def from_settings(cls, providers: ProviderSettings) -> AlphaVantageAdapter:
        return cls(
            providers.secondary_api_key,
            base_url=providers.alphavantage_base_url,
            timeout=providers.timeout_seconds,
        )

    async def _query(self, params: dict[str, str]) -> dict[str, Any]:
        if not self.api_key:
            raise ProviderNotConfigured(self.name)
        url = build_url(self.base_url, _QUERY_PATH, {**params, "apikey": self.api_key})
        payload = await asyncio.to_thread(get_json, self.name, url, None, self.timeout)
        if not isinstance(payload, dict):
            raise ProviderDataError(self.name, "payload is not an object")
        # Errors and throttling notices arrive with HTTP 200.
        for marker in ("Error Message", "Note", "Information"):
            if marker in payload:
                raise ProviderDataError(self.name, str(payload[marker]))
        return payload

    async def fetch_quote(self, symbol: str) -> NormalizedQuote:
        payload = await self._query({"function": "GLOBAL_QUOTE", "symbol": symbol})
        quote = payload.get("Global Quote")
        if not isinstance(quote, dict) or not quote:
            raise ProviderDataError(self.name, f"no quote for {symbol}")

        price = _parse_number(quote.get("05. price"))
        if not price:
            raise ProviderDataError(self.name, f"no price for {symbol}")

        return NormalizedQuote(
            source="live",
            provider=self.provider,
            as_of=self._clock(),
            symbol=symbol,
            price=price,
            change=_parse_number(quote.get("09. change")) or 0.0,
            change_percent=_parse_number(quote.get("10. change percent")) or 0.0,
            open=_parse_number(quote.get("02. open")),
            high=_parse_number(quote.get("03. high")),
            low=_parse_number(quote.get("04. low")),
            previous_close=_parse_number(quote.get("08. previous close")),
            volume=_parse_number(quote.get("06. volume")),
        )

    async def fetch_intraday(self, symbol: str) -> NormalizedIntraday:
        payload = await self._query(
            {"function": "TIME_SERIES_INTRADAY", "symbol": symbol, "interval": _INTERVAL}
        )
        series = payload.get(_SERIES_KEY)
        if not isinstance(series, dict) or not series:
            raise ProviderDataError(self.name, f"no intraday series for {symbol}")

        candles: list[Candle] = []
        for raw_ts, bar in series.items():
            if not isinstance(bar, dict):
                continue
            try:
                timestamp = datetime.datetime.strptime(raw_ts, "%Y-%m-%d %H:%M:%S")
            except ValueError:
                continue
            values = [_parse_number(bar.get(field)) for field in ("1. open", "2. high", "3. low", "4. close")]
            if any(value is None for value in values):
                continue
            open_, high, low, close = values
            candles.append(
                Candle(
                    timestamp=timestamp.replace(tzinfo=_EXCHANGE_TZ),
                    open=open_,
                    high=high,
                    low=low,
                    close=close,
                    volume=_parse_number(bar.get("5. volume")),
                )
            )
        if not candles:
            raise ProviderDataError(self.name, f"no intraday series for {symbol}")

        candles.sort(key=lambda candle: candle.timestamp)
        return NormalizedIntraday(
            source="live",
            provider=self.provider,
            as_of=self._clock(),
            symbol=symbol,
            interval=_INTERVAL,
            candles=candles,
        )
