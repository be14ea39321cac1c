"""Bot-wall detection for fetched pages."""

from __future__ import annotations

import re
from typing import List, Optional

BLOCK_MARKERS = (
    ("enable_javascript", "enable javascript"),
    ("captcha", "captcha"),
    ("access_denied", "access denied"),
    ("incident_id", "incident id"),
    ("incapsula", "incapsula"),
    ("imperva", "imperva"),
    ("bot_check", "are you a robot"),
    ("bot_check", "verify you are human"),
    ("cloudflare", "cf-browser-verification"),
    ("cloudflare", "cf-challenge"),
    ("cloudflare", "just a moment..."),
    ("datadome", "captcha-delivery.com"),
    ("perimeterx", "px-captcha"),
)

CAPTCHA_MARKERS = {"captcha", "bot_check", "cloudflare", "datadome", "perimeterx"}

_TITLE_RE = re.compile(r"<title[^>]*>([\s\S]*?)</title>", re.IGNORECASE)


def detect_block_markers(html_text: Optional[str]) -> List[str]:
    """Marker tokens for obvious bot-block / captcha / access-denied pages."""
    lower = str(html_text or "").lower()
    markers: List[str] = []
    for token, needle in BLOCK_MARKERS:
        if needle in lower and token not in markers:
            markers.append(token)
    return markers


def title_preview(html_text: Optional[str], limit: int = 200) -> str:
    match = _TITLE_RE.search(html_text or "")
    if not match:
        return ""
    title = re.sub(r"\s+", " ", match.group(1)).strip()
    return title[:limit]


def classify_page_state(html_text: Optional[str], title: str = "") -> str:
    """'empty', 'captcha', 'blocked' or 'ok'."""
    if not (html_text or "").strip():
        return "empty"
    markers = detect_block_markers(f"{title}\n{html_text}")
    if not markers:
        return "ok"
    if CAPTCHA_MARKERS.intersection(markers):
        return "captcha"
    return "blocked"


def looks_like_captcha(html_text: Optional[str], title: str = "") -> bool:
    """Captcha wall heuristic for short pages.

    Long article pages mention "captcha" in scripts often enough that only the
    title or a short body counts.
    """
    if CAPTCHA_MARKERS.intersection(detect_block_markers(title)):
        return True
    body = html_text or ""
    if len(body) > 50_000:
        return False
    return bool(CAPTCHA_MARKERS.intersection(detect_block_markers(body)))
