"""Ground-truth context for the same-event check, built once per event."""

from __future__ import annotations

import logging
from typing import Any, Optional

from grinder.events.event_types import Event
from grinder.extraction.html_text import safe_html_to_text, strip_styles
from grinder.extraction.meta_extract import extract_meta
from grinder.ingestion.url_utils import canonicalize_url
from grinder.resolve.titles import normalize_title_for_search
from grinder.verification.verify_article import VerifyContext

logger = logging.getLogger(__name__)


def text_snippet(html: str, max_chars: int) -> str:
    if not html:
        return ""
    text = (safe_html_to_text(strip_styles(html)) or "").strip()
    if max_chars <= 0:
        return text
    return text[:max_chars]


async def original_html(url: str, cache: Any, fetcher: Any, html_hint: Optional[tuple] = None) -> str:
    """HTML of the original article: cache, then a page already fetched for it, then the network."""
    if cache is not None:
        html = cache.read_html(url)
        if html:
            return html
    if html_hint:
        hint_url, hint_html = html_hint
        if hint_html and canonicalize_url(hint_url) == canonicalize_url(url):
            return hint_html
    if fetcher is None:
        return ""
    outcome = await fetcher.fetch(url)
    return outcome.html if outcome.ok else ""


async def build_verify_context(
    event: Event,
    cache: Any = None,
    fetcher: Any = None,
    html_hint: Optional[tuple] = None,
    context_max_chars: int = 4_000,
) -> VerifyContext:
    """Memoised on the event; ``html_hint`` is ``(url, html)`` of a page just retrieved."""
    if event.verify_context is not None:
        return event.verify_context
    original = event.original
    context = VerifyContext(
        url=original.url or event.url,
        gn_url=original.gn_url or event.gn_url,
        title=original.title_en or original.title_ru or event.title_en or event.title_ru,
        source=original.source or event.source,
        date=original.date or event.date,
    )
    if context.url:
        html = await original_html(context.url, cache, fetcher, html_hint)
        if html:
            meta = extract_meta(html)
            if meta.title:
                context.title = meta.title
            if meta.description:
                context.description = meta.description
            if meta.keywords:
                context.keywords = meta.keywords
            if meta.date:
                context.date = meta.date
            context.text_snippet = text_snippet(html, context_max_chars)
        else:
            logger.debug(f"#{event.id} verify context without page html")
    context.title = normalize_title_for_search(context.title)
    event.verify_context = context
    return context
