from __future__ import annotations

import datetime
import uuid
from typing import Literal

from pydantic import Field

from signaldesk.schemas.quotes import CamelModel, ProviderName, QuoteSource


Direction = Literal["bullish", "bearish", "neutral"]


class Attribution(CamelModel):
    id: uuid.UUID | None = None
    source: str | None = None
    title: str
    snippet: str | None = None
    url: str | None = None
    published_at: datetime.datetime | None = None


class AlphaSignal(CamelModel):
    id: uuid.UUID | None = None
    user_id: str
    asset: str
    direction: Direction
    confidence: float
    time_horizon: str
    insight: str
    sources: int = 0
    category: str
    source: QuoteSource
    provider: ProviderName
    batch_source: QuoteSource = Field(default="live", exclude=True)
    batch_reason: str | None = Field(default=None, exclude=True)
    created_at: datetime.datetime | None = None
    attributions: list[Attribution] = Field(default_factory=list)


class SignalBatch(CamelModel):
    signals: list[AlphaSignal] = Field(default_factory=list)
    source: QuoteSource = "live"
    provider: str = "none"
    reason: str | None = None
    cached: bool = False


class AttributionList(CamelModel):
    signal_id: str
    attributions: list[Attribution] = Field(default_factory=list)
