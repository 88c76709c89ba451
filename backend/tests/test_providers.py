import asyncio
import datetime
from unittest.mock import patch
from urllib.error import HTTPError, URLError

import pytest

from signaldesk.providers.alphavantage import AlphaVantageAdapter
from signaldesk.providers.errors import (
    ProviderDataError,
    ProviderHTTPError,
    ProviderNotConfigured,
)
from signaldesk.providers.finnhub import FinnhubAdapter
from signaldesk.providers.http import build_url, get_json
from signaldesk.providers.news import NewsApiAdapter

NOW = datetime.datetime(2026, 1, 5, 15, 30, tzinfo=datetime.UTC)


def _clock() -> datetime.datetime:
    return NOW


def test_finnhub_quote_is_normalized() -> None:
    adapter = FinnhubAdapter("key", clock=_clock)
    payload = {"c": 185.25, "d": 2.14, "dp": 1.17, "o": 183.0, "h": 186.1, "l": 182.9, "pc": 183.11}

    with patch("signaldesk.providers.finnhub.get_json", return_value=payload) as get_mock:
        quote = asyncio.run(adapter.fetch_quote("AAPL"))

    url = get_mock.call_args.args[1]
    assert url.startswith("https://finnhub.io/api/v1/quote?")
    assert "symbol=AAPL" in url
    assert "token=key" in url
    assert quote.source == "live"
    assert quote.provider == "primary"
    assert quote.as_of == NOW
    assert quote.price == 185.25
    assert quote.change_percent == 1.17
    assert quote.previous_close == 183.11


def test_finnhub_zero_price_is_a_data_error() -> None:
    adapter = FinnhubAdapter("key", clock=_clock)

    with patch("signaldesk.providers.finnhub.get_json", return_value={"c": 0, "d": None}):
        with pytest.raises(ProviderDataError):
            asyncio.run(adapter.fetch_quote("NOPE"))


def test_finnhub_without_key_makes_no_request() -> None:
    adapter = FinnhubAdapter(None)

    with patch("signaldesk.providers.finnhub.get_json") as get_mock:
        with pytest.raises(ProviderNotConfigured) as excinfo:
            asyncio.run(adapter.fetch_quote("AAPL"))

    assert excinfo.value.message == "missing_key"
    assert get_mock.called is False


def test_finnhub_intraday_candles_are_sorted() -> None:
    adapter = FinnhubAdapter("key", clock=_clock)
    payload = {
        "s": "ok",
        "t": [1767627000, 1767626700],
        "o": [10.5, 10.0],
        "h": [11.0, 10.6],
        "l": [10.4, 9.9],
        "c": [10.9, 10.5],
        "v": [1200, 1500],
    }

    with patch("signaldesk.providers.finnhub.get_json", return_value=payload):
        intraday = asyncio.run(adapter.fetch_intraday("AAPL"))

    timestamps = [candle.timestamp for candle in intraday.candles]
    assert timestamps == sorted(timestamps)
    assert intraday.candles[0].open == 10.0
    assert intraday.interval == "5min"


def test_finnhub_intraday_no_data_is_a_data_error() -> None:
    adapter = FinnhubAdapter("key", clock=_clock)

    with patch("signaldesk.providers.finnhub.get_json", return_value={"s": "no_data"}):
        with pytest.raises(ProviderDataError):
            asyncio.run(adapter.fetch_intraday("AAPL"))


def test_alphavantage_quote_is_normalized() -> None:
    adapter = AlphaVantageAdapter("key", clock=_clock)
    payload = {
        "Global Quote": {
            "01. symbol": "MSFT",
            "02. open": "410.00",
            "03. high": "415.20",
            "04. low": "409.10",
            "05. price": "414.50",
            "06. volume": "18000000",
            "08. previous close": "411.00",
            "09. change": "3.50",
            "10. change percent": "0.8516%",
        }
    }

    with patch("signaldesk.providers.alphavantage.get_json", return_value=payload) as get_mock:
        quote = asyncio.run(adapter.fetch_quote("MSFT"))

    assert "function=GLOBAL_QUOTE" in get_mock.call_args.args[1]
    assert quote.provider == "secondary"
    assert quote.price == 414.5
    assert quote.change_percent == pytest.approx(0.8516)
    assert quote.volume == 18000000.0


def test_alphavantage_throttle_note_is_a_data_error() -> None:
    adapter = AlphaVantageAdapter("key", clock=_clock)
    payload = {"Note": "Thank you for using Alpha Vantage! Our standard API call frequency is 5 calls per minute."}

    with patch("signaldesk.providers.alphavantage.get_json", return_value=payload):
        with pytest.raises(ProviderDataError):
            asyncio.run(adapter.fetch_quote("MSFT"))


def test_alphavantage_empty_quote_is_a_data_error() -> None:
    adapter = AlphaVantageAdapter("key", clock=_clock)

    with patch("signaldesk.providers.alphavantage.get_json", return_value={"Global Quote": {}}):
        with pytest.raises(ProviderDataError):
            asyncio.run(adapter.fetch_quote("ZZZZ"))


def test_alphavantage_intraday_uses_exchange_time() -> None:
    adapter = AlphaVantageAdapter("key", clock=_clock)
    payload = {
        "Time Series (5min)": {
            "2026-01-05 10:05:00": {
                "1. open": "101.0",
                "2. high": "102.0",
                "3. low": "100.5",
                "4. close": "101.5",
                "5. volume": "900",
            },
            "2026-01-05 10:00:00": {
                "1. open": "100.0",
                "2. high": "101.2",
                "3. low": "99.8",
                "4. close": "101.0",
                "5. volume": "1000",
            },
        }
    }

    with patch("signaldesk.providers.alphavantage.get_json", return_value=payload):
        intraday = asyncio.run(adapter.fetch_intraday("MSFT"))

    first = intraday.candles[0]
    assert first.open == 100.0
    assert first.timestamp.astimezone(datetime.UTC) == datetime.datetime(
        2026, 1, 5, 15, 0, tzinfo=datetime.UTC
    )


def test_news_search_parses_articles() -> None:
    adapter = NewsApiAdapter("news-key")
    payload = {
        "status": "ok",
        "articles": [
            {
                "title": "AAPL beats estimates",
                "description": "Apple results",
                "url": "https://example.com/a",
                "source": {"name": "Wire"},
                "publishedAt": "2026-01-05T14:00:00Z",
            },
            {"title": None},
        ],
    }

    with patch("signaldesk.providers.news.get_json", return_value=payload) as get_mock:
        articles = asyncio.run(adapter.search(["AAPL", "MSFT"], page_size=5))

    assert get_mock.call_args.args[2] == {"X-Api-Key": "news-key"}
    assert "q=AAPL+OR+MSFT" in get_mock.call_args.args[1]
    assert len(articles) == 1
    assert articles[0].source == "Wire"
    assert articles[0].published_at == datetime.datetime(2026, 1, 5, 14, 0, tzinfo=datetime.UTC)


def test_news_search_error_status() -> None:
    adapter = NewsApiAdapter("news-key")

    with patch(
        "signaldesk.providers.news.get_json",
        return_value={"status": "error", "message": "apiKeyInvalid"},
    ):
        with pytest.raises(ProviderDataError) as excinfo:
            asyncio.run(adapter.search(["AAPL"]))

    assert "apiKeyInvalid" in str(excinfo.value)


def test_news_search_without_key() -> None:
    with pytest.raises(ProviderNotConfigured):
        asyncio.run(NewsApiAdapter(None).search(["AAPL"]))


def test_news_query_sends_free_text() -> None:
    adapter = NewsApiAdapter("news-key")

    with patch(
        "signaldesk.providers.news.get_json", return_value={"status": "ok", "articles": []}
    ) as get_mock:
        articles = asyncio.run(adapter.query("stock market"))

    assert articles == []
    assert "q=stock+market" in get_mock.call_args.args[1]
    assert "pageSize=10" in get_mock.call_args.args[1]


def test_build_url_encodes_params() -> None:
    assert (
        build_url("https://finnhub.io/", "/api/v1/quote", {"symbol": "BRK.B"})
        == "https://finnhub.io/api/v1/quote?symbol=BRK.B"
    )


def test_get_json_rate_limited() -> None:
    error = HTTPError("https://finnhub.io", 429, "Too Many Requests", None, None)

    with patch("signaldesk.providers.http.urlopen", side_effect=error):
        with pytest.raises(ProviderHTTPError) as excinfo:
            get_json("finnhub", "https://finnhub.io")

    assert excinfo.value.status_code == 429
    assert excinfo.value.rate_limited is True


def test_get_json_unreachable() -> None:
    with patch("signaldesk.providers.http.urlopen", side_effect=URLError("timed out")):
        with pytest.raises(ProviderHTTPError) as excinfo:
            get_json("finnhub", "https://finnhub.io")

    assert excinfo.value.status_code is None
    assert "unreachable" in excinfo.value.message
