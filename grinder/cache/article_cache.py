"""On-disk article cache.

Layout (one pair per canonical URL):
    {cache_dir}/{sha256}.html   "<!--\\n{url}\\n-->\\n{html}"
    {cache_dir}/{sha256}.txt    "{title}\\n\\n{body}"

The URL inside the leading HTML comment is authoritative; the alias index is
rebuilt from it at startup so that near-duplicate URLs (different query strings,
mobile hosts...) resolve to an already cached article.
"""

from __future__ import annotations

import html as html_lib
import logging
import os
import re
from dataclasses import dataclass
from typing import Dict, Optional

from grinder.events.event_types import Event, is_blank
from grinder.ingestion.url_utils import canonicalize_url, host_slug, is_aggregator_url, normalize_url, url_hash
from grinder.resolve.source_levels import source_from_url

logger = logging.getLogger(__name__)

MAX_CACHED_TEXT = 30_000
MIN_CACHED_TEXT = 400
ALIAS_HEADER_BYTES = 2048

_ANCHOR_RE = re.compile(r"^<!--\s*([\s\S]*?)\s*-->")
_META_TITLE_RES = (
    re.compile(r"<meta[^>]+(?:property|name)=[\"']og:title[\"'][^>]*>", re.IGNORECASE),
    re.compile(r"<meta[^>]+(?:property|name)=[\"']twitter:title[\"'][^>]*>", re.IGNORECASE),
    re.compile(r"<meta[^>]+name=[\"']title[\"'][^>]*>", re.IGNORECASE),
)
_CONTENT_RE = re.compile(r"content=[\"']([^\"']+)[\"']", re.IGNORECASE)
_TITLE_TAG_RE = re.compile(r"<title[^>]*>([^<]*)</title>", re.IGNORECASE)


def title_from_html(html: str) -> str:
    if not html:
        return ""
    for pattern in _META_TITLE_RES:
        match = pattern.search(html)
        if not match:
            continue
        content = _CONTENT_RE.search(match.group(0))
        if content and content.group(1):
            return html_lib.unescape(content.group(1)).strip()
    match = _TITLE_TAG_RE.search(html)
    if match and match.group(1):
        return html_lib.unescape(match.group(1)).strip()
    return ""


@dataclass(frozen=True)
class CacheProbe:
    available: bool
    reason: str
    key: str = ""
    url: str = ""
    html_path: str = ""
    txt_path: str = ""
    has_html: bool = False
    has_txt: bool = False


class ArticleCache:
    """HTML/text artifacts addressed by canonical URL hash"""

    def __init__(
        self,
        cache_dir: str = "articles",
        max_text_length: int = MAX_CACHED_TEXT,
        min_text_length: int = MIN_CACHED_TEXT,
    ):
        self.cache_dir = cache_dir
        self.max_text_length = max_text_length
        self.min_text_length = min_text_length
        self.aliases: Dict[str, str] = {}

    # -----------------------------
    # addressing
    # -----------------------------
    def _cache_url(self, event: Optional[Event], url: Optional[str]) -> str:
        override = "" if is_blank(url) else normalize_url(url)
        value = override or normalize_url(event.url if event is not None else "")
        return canonicalize_url(value)

    def _paths(self, key: str) -> tuple[str, str]:
        return (
            os.path.join(self.cache_dir, f"{key}.html"),
            os.path.join(self.cache_dir, f"{key}.txt"),
        )

    def probe(self, url: Optional[str], event: Optional[Event] = None) -> CacheProbe:
        cache_url = self._cache_url(event, url)
        if not cache_url:
            return CacheProbe(available=False, reason="no_url")
        key = url_hash(cache_url)
        html_path, txt_path = self._paths(key)
        has_html = os.path.exists(html_path)
        has_txt = os.path.exists(txt_path)
        return CacheProbe(
            available=has_html or has_txt,
            reason="found" if has_html or has_txt else "missing",
            key=key,
            url=cache_url,
            html_path=html_path,
            txt_path=txt_path,
            has_html=has_html,
            has_txt=has_txt,
        )

    # -----------------------------
    # reads
    # -----------------------------
    def _read(self, path: str) -> str:
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                return f.read()
        except FileNotFoundError:
            return ""

    def read_html(self, url: Optional[str], event: Optional[Event] = None) -> str:
        """Cached HTML without the leading URL comment ('' when absent)."""
        probe = self.probe(url, event)
        if not probe.has_html:
            return ""
        html = self._read(probe.html_path)
        if html.startswith("<!--"):
            end = html.find("-->")
            if end != -1:
                html = html[end + 3:]
        return html

    def backfill_meta(self, event: Event, url: Optional[str] = None) -> bool:
        """Fill blank url/titleEn/source from cached HTML; never touches text."""
        probe = self.probe(url, event)
        if not probe.key:
            return False
        changed = False
        if probe.has_html:
            html = self._read(probe.html_path)
            anchor = _ANCHOR_RE.match(html)
            if anchor and anchor.group(1) and is_blank(event.url):
                event.url = anchor.group(1).strip()
                changed = True
            if is_blank(event.title_en):
                title = title_from_html(html)
                if title:
                    event.title_en = title
                    changed = True
        if is_blank(event.source) and event.url and not is_aggregator_url(event.url):
            inferred = source_from_url(event.url)
            if inferred:
                event.source = inferred
                changed = True
        return changed

    def read_text(self, url: Optional[str], event: Optional[Event] = None) -> str:
        """Cached article body without the title header ('' when absent)."""
        probe = self.probe(url, event)
        if not probe.has_txt:
            return ""
        raw = self._read(probe.txt_path)
        parts = raw.split("\n\n", 1)
        return (parts[1] if len(parts) > 1 else raw).strip()

    def backfill_text(self, event: Event, url: Optional[str] = None) -> bool:
        """Fill blank text from the cached body; bodies at or under the minimum length are a miss."""
        if event.text:
            return False
        body = self.read_text(url, event)
        if len(body) <= self.min_text_length:
            return False
        event.text = body[: self.max_text_length]
        return True

    # -----------------------------
    # writes
    # -----------------------------
    def _write(self, path: str, content: str) -> None:
        os.makedirs(self.cache_dir, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)

    def write_text(self, event: Event, text: str, url: Optional[str] = None) -> bool:
        cache_url = self._cache_url(event, url)
        if not cache_url:
            return False
        _, txt_path = self._paths(url_hash(cache_url))
        title = event.title_en or event.title_ru or ""
        self._write(txt_path, f"{title}\n\n{text or ''}")
        return True

    def write(self, event: Event, html: str, text: str, url: Optional[str] = None) -> None:
        """Store a successful retrieval and fill blank title/source/text on the event."""
        if is_blank(event.title_en) and html:
            title = title_from_html(html)
            if title:
                event.title_en = title
        if is_blank(event.source) and event.url and not is_aggregator_url(event.url):
            inferred = source_from_url(event.url)
            if inferred:
                event.source = inferred
        event.text = (text or "")[: self.max_text_length]

        cache_url = self._cache_url(event, url)
        if not cache_url:
            return
        html_path, txt_path = self._paths(url_hash(cache_url))
        self._write(html_path, f"<!--\n{cache_url}\n-->\n{html or ''}")
        self._write(txt_path, f"{event.title_en or event.title_ru or ''}\n\n{event.text}")
        slug = host_slug(cache_url)
        if slug and slug not in self.aliases:
            self.aliases[slug] = cache_url

    # -----------------------------
    # alias index
    # -----------------------------
    def build_alias_index(self) -> Dict[str, str]:
        aliases: Dict[str, str] = {}
        if not os.path.isdir(self.cache_dir):
            self.aliases = aliases
            return aliases
        for name in sorted(os.listdir(self.cache_dir)):
            if not name.endswith(".html"):
                continue
            path = os.path.join(self.cache_dir, name)
            try:
                with open(path, "rb") as f:
                    head = f.read(ALIAS_HEADER_BYTES)
            except OSError as e:
                logger.debug(f"alias index skip {name}: {e}")
                continue
            match = _ANCHOR_RE.match(head.decode("utf-8", errors="ignore"))
            url = normalize_url(match.group(1)) if match and match.group(1) else ""
            if not url:
                continue
            slug = host_slug(url)
            if slug and slug not in aliases:
                aliases[slug] = url
        self.aliases = aliases
        logger.info(f"Cache alias index: {len(aliases)} entries from {self.cache_dir}")
        return aliases

    def resolve_alias(self, url: Optional[str]) -> str:
        if not url or not self.aliases:
            return ""
        slug = host_slug(url)
        if not slug:
            return ""
        return self.aliases.get(slug, "")
