"""Portfolio value over a period, built from stored versions and live quotes.

Each stored version contributes its recorded total value from the moment it
became active, clipped to the start of the period. The current version adds a
point at its ``updated_at``, and a final point at ``now`` carries the live
market value. When any holding only has a demo quote the live point is left
out and the result is marked ``demo``.
"""

from __future__ import annotations

import datetime

from signaldesk.schemas.portfolio import (
    PerformancePeriod,
    PerformancePoint,
    PortfolioHistoryEntry,
    PortfolioPerformance,
    PortfolioResponse,
)
from signaldesk.schemas.quotes import NormalizedQuote


PERIOD_DAYS: dict[str, int] = {
    "1D": 1,
    "1W": 7,
    "1M": 30,
    "3M": 90,
    "6M": 180,
    "1Y": 365,
    "ALL": 5 * 365,
}


def period_start(period: PerformancePeriod, now: datetime.datetime) -> datetime.datetime:
    return now - datetime.timedelta(days=PERIOD_DAYS[period])


def build_performance(
    portfolio: PortfolioResponse,
    history: list[PortfolioHistoryEntry],
    quotes: list[NormalizedQuote],
    period: PerformancePeriod,
    now: datetime.datetime,
) -> PortfolioPerformance:
    start = period_start(period, now)
    points: list[PerformancePoint] = []
    for entry in history:
        active_from = entry.updated_at or entry.recorded_at
        if active_from is None:
            continue
        points.append(PerformancePoint(timestamp=max(active_from, start), value=entry.total_value))
    if portfolio.updated_at is not None:
        points.append(
            PerformancePoint(timestamp=max(portfolio.updated_at, start), value=portfolio.total_value)
        )

    demo_symbols = [quote.symbol for quote in quotes if quote.source != "live"]
    reason = None
    if demo_symbols:
        reason = "Demo quotes for " + ", ".join(demo_symbols)
    else:
        market_value = sum(
            holding.shares * quote.price for holding, quote in zip(portfolio.holdings, quotes)
        )
        points.append(PerformancePoint(timestamp=now, value=round(market_value, 2)))
    if not points:
        points.append(PerformancePoint(timestamp=now, value=portfolio.total_value))
    points.sort(key=lambda point: point.timestamp)

    values = [point.value for point in points]
    start_value, end_value = values[0], values[-1]
    change = round(end_value - start_value, 2)
    return PortfolioPerformance(
        user_id=portfolio.user_id,
        period=period,
        start_value=start_value,
        end_value=end_value,
        change=change,
        change_percent=round(change / start_value * 100, 2) if start_value else 0.0,
        highest_value=max(values),
        lowest_value=min(values),
        data_points=points,
        calculated_at=now,
        source="demo" if demo_symbols else "live",
        reason=reason,
    )
