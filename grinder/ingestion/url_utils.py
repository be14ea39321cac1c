"""URL canonicalization helpers for the article cache and candidate dedup."""

from __future__ import annotations

import hashlib
import re
from typing import Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


TRACKING_PREFIXES = ("utm_", "gaa_", "ga_")

TRACKING_PARAMS = {
    "gclid",
    "fbclid",
    "yclid",
    "mc_cid",
    "mc_eid",
    "igshid",
    "cmpid",
    "ref",
    "refsrc",
    "mkt_tok",
}

AGGREGATOR_HOSTS = ("news.google.com",)

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def normalize_url(url: Optional[str]) -> str:
    """Trim whitespace and stray quoting around a URL; '' for blank input."""
    if not url:
        return ""
    value = str(url).strip().strip("<>\"'").strip()
    return value


def ensure_scheme(url: str) -> str:
    if url and not _SCHEME_RE.match(url):
        return f"https://{url}"
    return url


def is_tracking_param(name: str, *, strip_params: Optional[Iterable[str]] = None) -> bool:
    key = (name or "").lower()
    if strip_params is not None:
        return key in {p.lower() for p in strip_params}
    return key.startswith(TRACKING_PREFIXES) or key in TRACKING_PARAMS


def canonicalize_url(url: Optional[str], *, strip_params: Optional[Iterable[str]] = None) -> str:
    """Canonicalize a URL for cache addressing.

    - Adds https:// when the scheme is missing
    - Lowercase scheme + hostname
    - Removes fragments
    - Strips tracking query parameters
    - Sorts remaining query params so ordering never changes the key

    Returns '' when the URL is blank or has no host.
    """
    value = normalize_url(url)
    if not value:
        return ""
    value = ensure_scheme(value)
    try:
        p = urlparse(value)
    except ValueError:
        return ""
    if not p.netloc:
        return ""
    scheme = (p.scheme or "https").lower()
    netloc = p.netloc.lower()
    path = p.path or "/"

    kept = []
    for k, v in parse_qsl(p.query, keep_blank_values=True):
        if is_tracking_param(k, strip_params=strip_params):
            continue
        kept.append((k, v))
    kept.sort(key=lambda kv: (kv[0].lower(), kv[1]))
    query = urlencode(kept, doseq=True)

    return urlunparse((scheme, netloc, path, "", query, ""))


def url_hash(url: Optional[str]) -> str:
    """Stable sha256 hex for a canonicalized URL ('' when the URL is unusable)."""
    canon = canonicalize_url(url)
    if not canon:
        return ""
    return hashlib.sha256(canon.encode("utf-8")).hexdigest()


def host_of(url: Optional[str]) -> str:
    """Hostname without a leading www., lowercased."""
    value = ensure_scheme(normalize_url(url))
    if not value:
        return ""
    try:
        host = (urlparse(value).hostname or "").lower()
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def host_slug(url: Optional[str]) -> str:
    """`host/last-path-segment` key used to alias near-duplicate article URLs."""
    value = ensure_scheme(normalize_url(url))
    if not value:
        return ""
    try:
        p = urlparse(value)
    except ValueError:
        return ""
    host = (p.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    segments = [s for s in (p.path or "").rstrip("/").split("/") if s]
    if not host or not segments:
        return ""
    return f"{host}/{segments[-1]}"


def is_aggregator_url(url: Optional[str]) -> bool:
    host = host_of(url)
    return any(host == h or host.endswith("." + h) for h in AGGREGATOR_HOSTS)


def strip_query(url: str) -> str:
    return (url or "").split("?", 1)[0]


def search_terms_from_url(url: Optional[str]) -> str:
    """Turn the article slug of a URL into space separated words."""
    slug = host_slug(url)
    if not slug:
        return ""
    last = slug.split("/", 1)[1]
    last = re.sub(r"\.[a-z0-9]{2,5}$", "", last, flags=re.IGNORECASE)
    words = [w for w in re.split(r"[-_+]+", last) if w and not w.isdigit()]
    if len(words) < 2:
        return ""
    return " ".join(words)
