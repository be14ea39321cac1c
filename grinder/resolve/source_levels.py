"""Outlet authority levels.

Levels are deterministic priors, not learned scores:
3 = wire services and major international outlets
2 = national outlets
1 = known outlets / aggregators of record
0 = unknown
"""

from __future__ import annotations

import re
from typing import Dict, Optional

from grinder.ingestion.url_utils import host_of, is_aggregator_url


# -----------------------------
# Known outlets (v0)
# -----------------------------
LEVEL_3_DOMAINS = {
    "reuters.com",
    "apnews.com",
    "afp.com",
    "bloomberg.com",
    "bbc.co.uk",
    "bbc.com",
    "ft.com",
    "wsj.com",
    "nytimes.com",
    "washingtonpost.com",
    "theguardian.com",
    "economist.com",
    "aljazeera.com",
}

LEVEL_2_DOMAINS = {
    "cnn.com",
    "cnbc.com",
    "npr.org",
    "abcnews.go.com",
    "cbsnews.com",
    "nbcnews.com",
    "politico.com",
    "axios.com",
    "time.com",
    "latimes.com",
    "usatoday.com",
    "independent.co.uk",
    "telegraph.co.uk",
    "dw.com",
    "france24.com",
    "lemonde.fr",
    "spiegel.de",
    "nikkei.com",
    "scmp.com",
    "theatlantic.com",
    "foxnews.com",
}

LEVEL_1_DOMAINS = {
    "yahoo.com",
    "msn.com",
    "marketscreener.com",
    "investing.com",
    "marketwatch.com",
    "forbes.com",
    "businessinsider.com",
    "theverge.com",
    "techcrunch.com",
    "thehill.com",
    "newsweek.com",
    "euronews.com",
    "kyivindependent.com",
    "timesofisrael.com",
    "straitstimes.com",
}

# outlet display name -> canonical domain
OUTLET_NAMES: Dict[str, str] = {
    "reuters": "reuters.com",
    "associated press": "apnews.com",
    "ap news": "apnews.com",
    "the associated press": "apnews.com",
    "afp": "afp.com",
    "agence france-presse": "afp.com",
    "bloomberg": "bloomberg.com",
    "bloomberg.com": "bloomberg.com",
    "bbc": "bbc.com",
    "bbc news": "bbc.com",
    "financial times": "ft.com",
    "the wall street journal": "wsj.com",
    "wall street journal": "wsj.com",
    "wsj": "wsj.com",
    "the new york times": "nytimes.com",
    "new york times": "nytimes.com",
    "the washington post": "washingtonpost.com",
    "washington post": "washingtonpost.com",
    "the guardian": "theguardian.com",
    "the economist": "economist.com",
    "al jazeera": "aljazeera.com",
    "al jazeera english": "aljazeera.com",
    "cnn": "cnn.com",
    "cnbc": "cnbc.com",
    "npr": "npr.org",
    "abc news": "abcnews.go.com",
    "cbs news": "cbsnews.com",
    "nbc news": "nbcnews.com",
    "politico": "politico.com",
    "axios": "axios.com",
    "time": "time.com",
    "los angeles times": "latimes.com",
    "usa today": "usatoday.com",
    "the independent": "independent.co.uk",
    "the telegraph": "telegraph.co.uk",
    "dw": "dw.com",
    "deutsche welle": "dw.com",
    "france 24": "france24.com",
    "le monde": "lemonde.fr",
    "der spiegel": "spiegel.de",
    "nikkei asia": "nikkei.com",
    "south china morning post": "scmp.com",
    "the atlantic": "theatlantic.com",
    "fox news": "foxnews.com",
    "yahoo news": "yahoo.com",
    "yahoo finance": "yahoo.com",
    "marketwatch": "marketwatch.com",
    "forbes": "forbes.com",
    "business insider": "businessinsider.com",
    "the verge": "theverge.com",
    "techcrunch": "techcrunch.com",
    "the hill": "thehill.com",
    "newsweek": "newsweek.com",
    "euronews": "euronews.com",
    "the kyiv independent": "kyivindependent.com",
    "the times of israel": "timesofisrael.com",
    "the straits times": "straitstimes.com",
}

# canonical domain -> display name used when the outlet has to be inferred from a URL
DISPLAY_NAMES: Dict[str, str] = {
    "reuters.com": "Reuters",
    "apnews.com": "AP News",
    "afp.com": "AFP",
    "bloomberg.com": "Bloomberg",
    "bbc.com": "BBC",
    "bbc.co.uk": "BBC",
    "ft.com": "Financial Times",
    "wsj.com": "The Wall Street Journal",
    "nytimes.com": "The New York Times",
    "washingtonpost.com": "The Washington Post",
    "theguardian.com": "The Guardian",
    "economist.com": "The Economist",
    "aljazeera.com": "Al Jazeera",
    "cnn.com": "CNN",
    "cnbc.com": "CNBC",
    "npr.org": "NPR",
    "politico.com": "Politico",
    "axios.com": "Axios",
}

_PUNCT_RE = re.compile(r"[^\w\s.&-]+", re.UNICODE)
_WS_RE = re.compile(r"\s+")


def normalize_source(value: Optional[str]) -> str:
    """Comparable outlet key: lowercased name or bare host."""
    raw = (value or "").strip().lower()
    if not raw:
        return ""
    if "/" in raw or raw.startswith("www."):
        host = host_of(raw)
        if host:
            return host
    raw = _PUNCT_RE.sub(" ", raw)
    raw = _WS_RE.sub(" ", raw).strip()
    if raw.startswith("www."):
        raw = raw[4:]
    return raw


def source_domain(value: Optional[str]) -> str:
    """Best-guess domain for an outlet name or host ('' when unknown)."""
    key = normalize_source(value)
    if not key:
        return ""
    if key in OUTLET_NAMES:
        return OUTLET_NAMES[key]
    if "." in key and " " not in key:
        return key
    return ""


def _domain_level(domain: str) -> int:
    d = (domain or "").lower()
    for level, domains in ((3, LEVEL_3_DOMAINS), (2, LEVEL_2_DOMAINS), (1, LEVEL_1_DOMAINS)):
        if d in domains or any(d.endswith("." + known) for known in domains):
            return level
    return 0


def source_level(source: Optional[str], url: Optional[str] = None) -> int:
    """Authority level of an outlet, from its name first, then its URL host."""
    level = _domain_level(source_domain(source))
    if level:
        return level
    if url and not is_aggregator_url(url):
        return _domain_level(host_of(url))
    return 0


def source_from_url(url: Optional[str]) -> str:
    """Outlet name inferred from a URL host; '' for aggregator links."""
    if not url or is_aggregator_url(url):
        return ""
    host = host_of(url)
    if not host:
        return ""
    for domain, name in DISPLAY_NAMES.items():
        if host == domain or host.endswith("." + domain):
            return name
    return host


def same_outlet(a: Optional[str], b: Optional[str]) -> bool:
    """Name/host tolerant outlet equality ("Reuters" == "reuters.com")."""
    key_a, key_b = normalize_source(a), normalize_source(b)
    if not key_a or not key_b:
        return False
    if key_a == key_b:
        return True
    domain_a = source_domain(a)
    return bool(domain_a) and domain_a == source_domain(b)
