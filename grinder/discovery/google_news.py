"""Google News: redirect-link decoding and RSS headline search.

The decoder replays the batchexecute call the news.google.com article page makes
(no JavaScript needed). Google answers HTTP 429 when it is decoded too often; the
decoder then refuses work for a cooldown period that callers can inspect.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable, List, Optional
from urllib.parse import quote

import feedparser
import requests
from bs4 import BeautifulSoup

from grinder.events.event_types import Candidate, Event, is_blank
from grinder.ingestion.url_utils import is_aggregator_url, normalize_url, search_terms_from_url
from grinder.pipeline.pacing import GN_SEARCH, RateLimitLedger
from grinder.resolve.alternatives import AlternativeResolver, candidate_title_key, target_title_key
from grinder.resolve.source_levels import same_outlet, source_from_url
from grinder.resolve.titles import normalize_title_for_search, title_matches

logger = logging.getLogger(__name__)

BATCHEXECUTE_URL = "https://news.google.com/_/DotsSplashUi/data/batchexecute"
RSS_SEARCH_URL = "https://news.google.com/rss/search?q={query}&hl=en-US&gl=US&ceid=US:en"
DECODER_USER_AGENT = "Mozilla/5.0 (compatible; grinder/1.0)"
DECODE_COOLDOWN_MS = 5 * 60_000
GN_ORIGIN = "gn"


# -----------------------------
# decoder
# -----------------------------
class GoogleNewsDecoder:
    """news.google.com/rss/articles/... -> publisher URL"""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        cooldown_ms: float = DECODE_COOLDOWN_MS,
        clock: Callable[[], float] = time.time,
    ):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.cooldown_ms = cooldown_ms
        self.clock = clock
        self._cooldown_until_ms = 0.0

    def cooldown_seconds(self) -> float:
        remaining = self._cooldown_until_ms - self.clock() * 1000
        return max(0.0, remaining / 1000)

    def _start_cooldown(self) -> None:
        self._cooldown_until_ms = self.clock() * 1000 + self.cooldown_ms
        logger.warning(f"Google News decode rate limited; cooling down {int(self.cooldown_ms / 1000)}s")

    async def decode(self, url: str) -> str:
        return await asyncio.to_thread(self.decode_sync, url)

    def decode_sync(self, url: str) -> str:
        """Publisher URL, the input itself for non-aggregator links, '' on failure."""
        url = normalize_url(url)
        if not url:
            return ""
        if not is_aggregator_url(url):
            return url
        if self.cooldown_seconds() > 0:
            return ""
        try:
            return self._decode(url)
        except (requests.exceptions.RequestException, ValueError, IndexError, TypeError) as e:
            logger.warning(f"Google News decode failed for {url}: {e}")
            return ""

    def _decode(self, url: str) -> str:
        resp = self.session.get(url, timeout=self.timeout, headers={"User-Agent": DECODER_USER_AGENT})
        if resp.status_code == 429:
            self._start_cooldown()
            return ""
        resp.raise_for_status()
        soup = BeautifulSoup(resp.text, "html.parser")
        node = soup.select_one("c-wiz[data-p]")
        data_p = node.get("data-p") if node else None
        if not data_p:
            logger.info(f"Google News page without data-p: {url}")
            return ""

        payload_obj = json.loads(data_p.replace("%.@.", '["garturlreq",'))
        payload = {
            "f.req": json.dumps(
                [[["Fbv4je", json.dumps(payload_obj[:-6] + payload_obj[-2:]), "null", "generic"]]]
            )
        }
        headers = {
            "content-type": "application/x-www-form-urlencoded;charset=UTF-8",
            "user-agent": DECODER_USER_AGENT,
        }
        api_resp = self.session.post(BATCHEXECUTE_URL, headers=headers, data=payload, timeout=self.timeout)
        if api_resp.status_code == 429:
            self._start_cooldown()
            return ""
        api_resp.raise_for_status()

        # XSSI prefix, then a JSON string holding another JSON array
        cleaned = api_resp.text.replace(")]}'", "")
        outer = json.loads(cleaned)
        array_string = outer[0][2] if outer and outer[0] else None
        if not array_string:
            return ""
        parsed = json.loads(array_string)
        if isinstance(parsed, list) and len(parsed) > 1 and isinstance(parsed[1], str):
            resolved = parsed[1]
            if resolved.startswith("http"):
                return resolved
        return ""


# -----------------------------
# RSS search
# -----------------------------
def _entry_value(entry: Any, name: str) -> Any:
    value = getattr(entry, name, None)
    if value is None and isinstance(entry, dict):
        value = entry.get(name)
    return value


def entry_source(entry: Any) -> str:
    src = _entry_value(entry, "source")
    if isinstance(src, dict):
        return str(src.get("title") or "").strip() or source_from_url(src.get("href"))
    title = getattr(src, "title", None) if src is not None else None
    return str(title or "").strip()


class GoogleNewsSearch:
    """Headline search over the Google News RSS endpoint"""

    def __init__(self, max_results: int = 20, parse: Callable[[str], Any] = feedparser.parse):
        self.max_results = max_results
        self.parse = parse

    def feed_url(self, query: str) -> str:
        return RSS_SEARCH_URL.format(query=quote(query))

    async def search(self, query: str) -> List[Candidate]:
        return await asyncio.to_thread(self.search_sync, query)

    def search_sync(self, query: str) -> List[Candidate]:
        query = (query or "").strip()
        if not query:
            return []
        try:
            feed = self.parse(self.feed_url(query))
        except Exception as e:
            logger.warning(f"RSS parse error for '{query}': {e}")
            return []

        out: List[Candidate] = []
        for position, entry in enumerate((_entry_value(feed, "entries") or [])[: self.max_results], start=1):
            link = _entry_value(entry, "link")
            title = _entry_value(entry, "title")
            if not link or not title:
                continue
            published = _entry_value(entry, "published") or _entry_value(entry, "updated") or ""
            out.append(
                Candidate(
                    source=entry_source(entry),
                    gn_url=normalize_url(str(link)),
                    title_en=normalize_title_for_search(str(title)),
                    date=str(published),
                    origin=GN_ORIGIN,
                    rank=float(position),
                )
            )
        logger.debug(f"Google News search '{query}': {len(out)} results")
        return out


def search_query(event: Event) -> str:
    title = normalize_title_for_search(event.title_en or event.original.title_en or event.title_ru)
    return title or search_terms_from_url(event.url or event.original.url)


class GoogleNewsHydrator:
    """Fills an event's candidate pool (and blank identity fields) from headline search"""

    def __init__(self, search: GoogleNewsSearch, ledger: RateLimitLedger, resolver: AlternativeResolver, event_log=None):
        self.search = search
        self.ledger = ledger
        self.resolver = resolver
        self.event_log = event_log

    def _record(self, event: Event, data: dict, message: str, level: str = "info") -> None:
        if self.event_log is not None:
            self.event_log.record(event, data, message, level)

    async def _search(self, event: Event, phase: str) -> List[Candidate]:
        query = search_query(event)
        if not query:
            self._record(event, {"phase": phase, "status": "skipped", "reason": "no_query"},
                         f"#{event.id} {phase} skipped (no query)", "warn")
            return []
        await self.ledger.wait(GN_SEARCH)
        self.ledger.mark(GN_SEARCH)
        results = await self.search.search(query)
        self._record(
            event,
            {"phase": phase, "status": "ok" if results else "empty", "query": query, "count": len(results)},
            f"#{event.id} {phase} {len(results)}",
            "info" if results else "warn",
        )
        return results

    def _same_event_item(self, event: Event, items: List[Candidate], require_outlet: bool) -> Optional[Candidate]:
        target = target_title_key(event)
        outlet = event.source or source_from_url(event.url)
        for item in items:
            if target and not title_matches(target, candidate_title_key(item)):
                continue
            if outlet and not same_outlet(outlet, item.source):
                continue
            if require_outlet and not outlet:
                continue
            return item
        return None

    async def hydrate(self, event: Event) -> int:
        """Merge matching search results into the pool; returns how many were added."""
        results = await self._search(event, "gn_search")
        if not results:
            return 0
        added = self.resolver.merge(event, results)
        match = self._same_event_item(event, results, require_outlet=False)
        if match is not None:
            if is_blank(event.gn_url) and match.gn_url:
                event.gn_url = match.gn_url
            if is_blank(event.title_en) and match.title_en:
                event.title_en = match.title_en
            if is_blank(event.source) and match.source:
                event.source = match.source
        if added:
            logger.info(f"#{event.id} google news added {added} candidates")
        return added

    async def backfill_gn_url(self, event: Event) -> bool:
        """Set a blank gnUrl from the same outlet's entry for this headline."""
        if not is_blank(event.gn_url):
            return False
        results = await self._search(event, "gn_backfill")
        match = self._same_event_item(event, results, require_outlet=True)
        if match is None or not match.gn_url:
            return False
        event.gn_url = match.gn_url
        self._record(event, {"phase": "gn_backfill", "status": "ok", "url": match.gn_url},
                     f"#{event.id} google news link backfilled")
        return True
