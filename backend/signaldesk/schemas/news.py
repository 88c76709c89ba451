from __future__ import annotations

import datetime

from pydantic import Field

from signaldesk.schemas.quotes import CamelModel, QuoteSource


class NewsArticle(CamelModel):
    title: str
    description: str | None = None
    url: str | None = None
    source: str | None = None
    published_at: datetime.datetime | None = None


class NewsFeed(CamelModel):
    articles: list[NewsArticle] = Field(default_factory=list)
    source: QuoteSource = "live"
    reason: str | None = None
    cached: bool = False
