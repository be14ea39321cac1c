"""Live external news search used after the candidate pool is exhausted."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import requests

from grinder.events.event_types import Candidate, Event
from grinder.ingestion.url_utils import normalize_url
from grinder.resolve.titles import normalize_title_for_search

logger = logging.getLogger(__name__)

NEWSAPI_ORIGIN = "newsapi"


def build_queries(event: Event) -> List[str]:
    """Original headline, then headline + outlet; blanks and repeats dropped."""
    title = normalize_title_for_search(event.original.title_en or event.title_en or event.original.title_ru)
    source = (event.original.source or event.source or "").strip()
    queries: List[str] = []
    for query in (title, f"{title} {source}" if title and source else ""):
        query = query.strip()
        if query and query not in queries:
            queries.append(query)
    return queries


class NewsApiSearch:
    """NewsAPI `everything` search returning alternative candidates"""

    endpoint = "https://newsapi.org/v2/everything"

    def __init__(
        self,
        api_key: str = "",
        enabled: bool = False,
        provider: str = NEWSAPI_ORIGIN,
        page_size: int = 20,
        days: int = 7,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.enabled = enabled
        self.provider = provider
        self.page_size = page_size
        self.days = days
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings, session: Optional[requests.Session] = None) -> "NewsApiSearch":
        return cls(
            api_key=settings.newsapi_key,
            enabled=settings.external_search_enabled,
            provider=settings.external_search_provider or NEWSAPI_ORIGIN,
            timeout=settings.request_timeout,
            session=session,
        )

    async def search(self, query: str) -> List[Candidate]:
        return await asyncio.to_thread(self.search_sync, query)

    def search_sync(self, query: str) -> List[Candidate]:
        if not self.enabled or not self.api_key or not (query or "").strip():
            return []
        params = {
            "q": query,
            "language": "en",
            "sortBy": "relevancy",
            "pageSize": min(max(self.page_size, 1), 100),
            "from": (datetime.now(timezone.utc) - timedelta(days=self.days)).isoformat(),
        }
        headers = {"X-Api-Key": self.api_key, "User-Agent": "grinder/1.0"}
        try:
            resp = self.session.get(self.endpoint, params=params, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json() or {}
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"External search failed for '{query}': {e}")
            return []

        out: List[Candidate] = []
        for position, a in enumerate(data.get("articles") or [], start=1):
            if not isinstance(a, dict):
                continue
            url = a.get("url") or ""
            title = a.get("title") or ""
            if not url or not title:
                continue
            source_name = ""
            src = a.get("source")
            if isinstance(src, dict):
                source_name = src.get("name") or ""
            out.append(
                Candidate(
                    source=str(source_name).strip(),
                    url=normalize_url(str(url)),
                    title_en=str(title).strip(),
                    date=str(a.get("publishedAt") or ""),
                    origin=self.provider,
                    rank=float(position),
                )
            )
        return out
