"""HTML -> plain text conversion.

trafilatura's ``html2txt`` flattens a whole document; the regex stripper is the
fast path for oversized input or when the converter blows up.
"""

from __future__ import annotations

import html as html_lib
import logging
import re
from typing import Optional

import trafilatura

logger = logging.getLogger(__name__)

MAX_HTML_TO_TEXT_CHARS = 4_000_000

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_STYLE_RE = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
_SCRIPT_RE = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_HAS_TAG_RE = re.compile(r"<[a-z][\s\S]*>", re.IGNORECASE)


def strip_styles(html: str) -> str:
    return _STYLE_RE.sub("", html or "")


def looks_like_html(text: str) -> bool:
    return bool(_HAS_TAG_RE.search(text or ""))


def strip_html_fast(html: str, limit: int = MAX_HTML_TO_TEXT_CHARS) -> str:
    """Regex tag stripper; never fails."""
    value = html or ""
    if limit and len(value) > limit:
        value = value[:limit]
    value = _SCRIPT_RE.sub(" ", value)
    value = _TAG_RE.sub(" ", value)
    value = html_lib.unescape(value)
    return _WS_RE.sub(" ", value).strip()


def html_to_text(html: str) -> str:
    """Flatten an HTML document or fragment to text."""
    if not html:
        return ""
    text: Optional[str] = trafilatura.html2txt(html)
    return (text or "").strip()


def safe_html_to_text(html: str, limit: int = MAX_HTML_TO_TEXT_CHARS) -> str:
    if not html:
        return ""
    if len(html) > limit:
        logger.info(f"html too large for html2txt ({len(html)} chars); stripping tags")
        return strip_html_fast(html, limit)
    try:
        return html_to_text(html)
    except Exception as e:
        logger.warning(f"html2txt failed: {e}")
        return strip_html_fast(html, limit)
