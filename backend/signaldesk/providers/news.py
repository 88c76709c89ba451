from __future__ import annotations

import asyncio
import datetime

from signaldesk.config.settings import ProviderSettings
from signaldesk.providers.errors import ProviderDataError, ProviderNotConfigured
from signaldesk.providers.http import build_url, get_json
from signaldesk.schemas.news import NewsArticle


_EVERYTHING_PATH = "/v2/everything"


def _parse_published(raw: object) -> datetime.datetime | None:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        return datetime.datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


class NewsApiAdapter:
    name = "newsapi"

    def __init__(
        self, api_key: str | None, base_url: str = "https://newsapi.org", timeout: float = 10
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout

    @classmethod
    def from_settings(cls, providers: ProviderSettings) -> NewsApiAdapter:
        return cls(
            providers.news_api_key,
            base_url=providers.newsapi_base_url,
            timeout=providers.timeout_seconds,
        )

    async def search(self, symbols: list[str], page_size: int = 20) -> list[NewsArticle]:
        if not self.api_key:
            raise ProviderNotConfigured(self.name)
        if not symbols:
            return []
        return await self.query(" OR ".join(symbols), page_size=page_size)

    async def query(self, q: str, page_size: int = 10) -> list[NewsArticle]:
        if not self.api_key:
            raise ProviderNotConfigured(self.name)

        url = build_url(
            self.base_url,
            _EVERYTHING_PATH,
            {
                "q": q,
                "sortBy": "publishedAt",
                "language": "en",
                "pageSize": str(page_size),
            },
        )
        payload = await asyncio.to_thread(
            get_json, self.name, url, {"X-Api-Key": self.api_key}, self.timeout
        )
        if not isinstance(payload, dict) or payload.get("status") != "ok":
            message = payload.get("message") if isinstance(payload, dict) else None
            raise ProviderDataError(self.name, message or "search failed")

        articles: list[NewsArticle] = []
        for raw in payload.get("articles") or []:
            if not isinstance(raw, dict) or not raw.get("title"):
                continue
            source = raw.get("source")
            articles.append(
                NewsArticle(
                    title=raw["title"],
                    description=raw.get("description"),
                    url=raw.get("url"),
                    source=source.get("name") if isinstance(source, dict) else None,
                    published_at=_parse_published(raw.get("publishedAt")),
                )
            )
        return articles
