from __future__ import annotations

from signaldesk.config.settings import SignalSettings
from signaldesk.schemas.news import NewsArticle
from signaldesk.schemas.quotes import NormalizedQuote
from signaldesk.schemas.signals import Attribution, Direction


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def classify_direction(change_percent: float, threshold: float = 0.4) -> Direction:
    if change_percent >= threshold:
        return "bullish"
    if change_percent <= -threshold:
        return "bearish"
    return "neutral"


def compute_confidence(change_percent: float, has_news: bool, config: SignalSettings) -> float:
    raw = config.min_confidence + min(abs(change_percent) * 8.0, 30.0)
    if has_news:
        raw += 10.0
    return round(clamp(raw, config.min_confidence, config.max_confidence), 1)


def time_horizon(change_percent: float, threshold: float = 0.4) -> str:
    magnitude = abs(change_percent)
    if magnitude >= 2.0:
        return "1-3 days"
    if magnitude >= threshold:
        return "3-7 days"
    return "7-14 days"


def match_articles(symbol: str, articles: list[NewsArticle]) -> list[NewsArticle]:
    """Articles whose title or description contains the ticker verbatim.

    Plain substring matching: short tickers that are also words ("ON", "IT")
    pick up unrelated headlines.
    """
    return [
        article
        for article in articles
        if symbol in article.title or (article.description and symbol in article.description)
    ]


def to_attribution(article: NewsArticle) -> Attribution:
    return Attribution(
        source=article.source,
        title=article.title,
        snippet=article.description,
        url=article.url,
        published_at=article.published_at,
    )


def build_insight(quote: NormalizedQuote, direction: Direction, match_count: int) -> str:
    if quote.source == "demo":
        return (
            f"{quote.symbol}: live price data unavailable, signal based on "
            f"{match_count} news mention(s) only."
        )
    move = "up" if quote.change_percent > 0 else "down" if quote.change_percent < 0 else "flat"
    text = (
        f"{quote.symbol} is {move} {quote.change_percent:+.2f}% at {quote.price:.2f}; "
        f"price action reads {direction}."
    )
    if match_count:
        text += f" {match_count} recent headline(s) mention the ticker."
    return text
