"""Article body extraction from raw HTML.

Layers, first hit wins:
1. plain text input (no tags at all)
2. JSON-LD ``articleBody`` / ``text`` / ``description``
3. well-known article container selectors
4. whole-document flattening

Nothing at or below the minimum length is ever returned.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from grinder.extraction.html_text import (
    MAX_HTML_TO_TEXT_CHARS,
    looks_like_html,
    safe_html_to_text,
    strip_styles,
)

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 400

ARTICLE_SELECTORS = (
    '[itemprop="articleBody"]',
    "article",
    "main",
    ".article-body",
    ".article-body__content",
    ".story-body",
    ".content__article-body",
    ".ArticleBody",
    ".ArticleBody-articleBody",
)


def iter_json_ld(soup: BeautifulSoup) -> List[Any]:
    """Parsed payloads of every ld+json script; broken JSON is skipped."""
    payloads = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = (script.string or script.get_text() or "").strip()
        if not raw:
            continue
        try:
            payloads.append(json.loads(raw))
        except ValueError:
            continue
    return payloads


def _collect_json_text(payloads: List[Any]) -> Dict[str, List[str]]:
    buckets: Dict[str, List[str]] = {"articleBody": [], "text": [], "description": []}
    seen = set()
    stack = list(payloads)
    while stack:
        node = stack.pop(0)
        if isinstance(node, list):
            stack[0:0] = node
            continue
        if not isinstance(node, dict) or id(node) in seen:
            continue
        seen.add(id(node))
        for key, bucket in buckets.items():
            value = node.get(key)
            if isinstance(value, str):
                bucket.append(value)
        stack.extend(v for v in node.values() if isinstance(v, (dict, list)))
    return buckets


def extract_json_ld_text(soup: BeautifulSoup, min_length: int = MIN_TEXT_LENGTH) -> Optional[str]:
    buckets = _collect_json_text(iter_json_ld(soup))
    for key in ("articleBody", "text", "description"):
        values = [v.strip() for v in buckets[key] if v.strip()]
        if not values:
            continue
        best = max(values, key=len)
        if len(best) > min_length:
            return best
        return None
    return None


def extract_dom_text(
    soup: BeautifulSoup,
    min_length: int = MIN_TEXT_LENGTH,
    max_html_chars: int = MAX_HTML_TO_TEXT_CHARS,
) -> Optional[str]:
    best = ""
    for selector in ARTICLE_SELECTORS:
        for node in soup.select(selector):
            inner = node.decode_contents()
            text = safe_html_to_text(inner, max_html_chars)
            if text and len(text) > len(best):
                best = text
    if len(best) > min_length:
        return best
    return None


def extract_text(
    html: Optional[str],
    min_length: int = MIN_TEXT_LENGTH,
    max_html_chars: int = MAX_HTML_TO_TEXT_CHARS,
) -> Optional[str]:
    """Best-effort article text, or None when nothing long enough was found."""
    if not html:
        return None
    cleaned = strip_styles(html)
    if not looks_like_html(cleaned):
        plain = cleaned.strip()
        if len(plain) > min_length:
            return plain

    try:
        soup = BeautifulSoup(cleaned, "html.parser")
        text = extract_json_ld_text(soup, min_length)
        if text:
            return text
        text = extract_dom_text(soup, min_length, max_html_chars)
        if text:
            return text
    except Exception as e:
        logger.debug(f"DOM parse failed, flattening whole document: {e}")

    text = safe_html_to_text(cleaned, max_html_chars)
    if not text or len(text) <= min_length:
        return None
    return text
