"""Headline normalization for search queries and candidate dedup keys."""

from __future__ import annotations

import re
from typing import Optional

from grinder.ingestion.url_utils import search_terms_from_url

STOPWORDS = {
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "has", "have",
    "in", "into", "is", "it", "its", "of", "on", "or", "over", "says", "that",
    "the", "to", "was", "were", "will", "with", "after", "amid", "new",
}

_WS_RE = re.compile(r"\s+")
_TOKEN_RE = re.compile(r"[^\W_]+", re.UNICODE)
# "Headline text - Outlet Name" / "Headline | Outlet"
_SUFFIX_RE = re.compile(r"\s+[-|–—]\s+([^-|–—]{2,60})$")


def normalize_title_for_search(title: Optional[str]) -> str:
    """Headline without the trailing outlet suffix that aggregators append."""
    value = _WS_RE.sub(" ", (title or "")).strip()
    match = _SUFFIX_RE.search(value)
    if match and len(match.group(1).split()) <= 5 and len(value) - len(match.group(0)) >= 15:
        value = value[: match.start()].strip()
    return value


def normalize_title_key(title: Optional[str]) -> str:
    """Order-preserving set of significant lowercase tokens."""
    value = normalize_title_for_search(title).lower()
    tokens = []
    for token in _TOKEN_RE.findall(value):
        if token in STOPWORDS or (len(token) < 2 and not token.isdigit()):
            continue
        if token not in tokens:
            tokens.append(token)
    return " ".join(tokens)


def title_matches(target_key: str, candidate_key: str) -> bool:
    """Loose same-headline test used when merging search results into a pool.

    Short targets (<= 2 tokens) need every token; otherwise at least two common
    tokens covering 30% of the longer key.
    """
    if not target_key or not candidate_key:
        return False
    target = set(target_key.split())
    candidate = set(candidate_key.split())
    if not target or not candidate:
        return False
    common = len(target & candidate)
    if len(target) <= 2:
        return common == len(target)
    ratio = common / max(len(target), len(candidate))
    return common >= 2 and ratio >= 0.3


def slug_title_key(url: Optional[str]) -> str:
    terms = search_terms_from_url(url)
    return normalize_title_key(terms) if terms else ""
