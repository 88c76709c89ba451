from __future__ import annotations

import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from signaldesk.schemas.quotes import CamelModel, NormalizedQuote, QuoteSource


PortfolioMethod = Literal["manual", "plaid"]
PerformancePeriod = Literal["1D", "1W", "1M", "3M", "6M", "1Y", "ALL"]


class Holding(CamelModel):
    symbol: str
    shares: float
    avg_cost: float


class PortfolioRequest(CamelModel):
    holdings: list[Holding] = Field(default_factory=list)
    total_value: Optional[float] = None
    method: PortfolioMethod = "manual"


class PortfolioUpdateRequest(CamelModel):
    """Partial update; omitted fields keep their stored values."""

    holdings: Optional[list[Holding]] = None
    total_value: Optional[float] = None
    method: Optional[PortfolioMethod] = None


class PortfolioResponse(CamelModel):
    user_id: str
    holdings: list[Holding] = Field(default_factory=list)
    total_value: float
    method: str
    version: int
    updated_at: datetime.datetime | None = None


class PortfolioHistoryEntry(CamelModel):
    version: int
    holdings: list[Holding] = Field(default_factory=list)
    total_value: float
    method: str
    action: Literal["update", "delete"]
    updated_at: datetime.datetime | None = None
    recorded_at: datetime.datetime | None = None


class PortfolioHistory(CamelModel):
    history: list[PortfolioHistoryEntry] = Field(default_factory=list)


class RealtimeHolding(CamelModel):
    symbol: str
    shares: float
    avg_cost: float
    market_value: Optional[float] = None
    quote: NormalizedQuote


class RealtimePortfolioResponse(CamelModel):
    holdings: list[RealtimeHolding] = Field(default_factory=list)
    total_market_value: Optional[float] = None


class PerformancePoint(CamelModel):
    timestamp: datetime.datetime
    value: float


class PortfolioPerformance(CamelModel):
    user_id: str
    period: PerformancePeriod
    start_value: float
    end_value: float
    change: float
    change_percent: float
    highest_value: float
    lowest_value: float
    data_points: list[PerformancePoint] = Field(default_factory=list)
    calculated_at: datetime.datetime
    source: QuoteSource = "live"
    reason: str | None = None
    cached: bool = False


ValidationLevel = Literal["warn", "fail"]


class ValidationIssue(BaseModel):
    field: str
    level: ValidationLevel
    message: str


class ValidationResult(BaseModel):
    status: Literal["ok", "warn", "fail"]
    issues: list[ValidationIssue] = Field(default_factory=list)


class PortfolioEnvelope(CamelModel):
    portfolio: Optional[PortfolioResponse] = None
