from __future__ import annotations

import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


QuoteSource = Literal["live", "demo"]
ProviderName = Literal["primary", "secondary", "demo"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class NormalizedQuote(CamelModel):
    source: QuoteSource
    provider: ProviderName
    as_of: datetime.datetime
    symbol: str
    price: float
    change: float
    change_percent: float
    open: float | None = None
    high: float | None = None
    low: float | None = None
    previous_close: float | None = None
    volume: float | None = None
    reason: str | None = None


class Candle(CamelModel):
    timestamp: datetime.datetime
    open: float
    high: float
    low: float
    close: float
    volume: float | None = None


class NormalizedIntraday(CamelModel):
    source: QuoteSource
    provider: ProviderName
    as_of: datetime.datetime
    symbol: str
    interval: str = "5min"
    candles: list[Candle] = Field(default_factory=list)
    reason: str | None = None


class BatchQuoteRequest(BaseModel):
    symbols: list[str] = Field(default_factory=list)


class BatchQuoteResponse(BaseModel):
    quotes: list[NormalizedQuote] = Field(default_factory=list)
