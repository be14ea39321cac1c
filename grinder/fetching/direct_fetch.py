"""Direct HTTP fetch with a reader-proxy fallback.

Returns a tagged FetchOutcome instead of raising: callers branch on ``method``
(fetch | jina | captcha | timeout | error) and ``status`` (HTTP code or a label).
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union
from urllib.parse import urlparse

import requests

from grinder.extraction.page_state import looks_like_captcha
from grinder.extraction.text_extract import extract_text

logger = logging.getLogger(__name__)

JINA_READER = "https://r.jina.ai/"

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

# statuses after which the proxy is not tried: the origin is refusing us
NON_RETRYABLE = {429, 403, 503, "captcha"}

Status = Union[int, str]


@dataclass(frozen=True)
class FetchOutcome:
    html: str
    method: str
    status: Status = ""
    url: str = ""

    @property
    def ok(self) -> bool:
        return bool(self.html)


_PRIVATE_NETS = [
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


def _is_private_ip(hostname: str) -> bool:
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return any(ip in net for net in _PRIVATE_NETS)


def validate_fetch_url(url: str) -> Optional[str]:
    """Return error string if URL should not be fetched (SSRF/abuse protections)."""
    try:
        p = urlparse(url)
    except ValueError:
        return "invalid_url"
    if p.scheme not in ("http", "https"):
        return "bad_scheme"
    host = (p.hostname or "").strip().lower()
    if not host:
        return "missing_host"
    if host in ("localhost", "localhost.localdomain"):
        return "blocked_host"
    if _is_private_ip(host):
        return "blocked_private_ip"
    return None


class DirectFetcher:
    """requests-based fetcher; blocking I/O runs in a worker thread"""

    def __init__(
        self,
        timeout: float = 20.0,
        min_text_length: int = 400,
        max_bytes: int = 5_000_000,
        use_jina: bool = True,
        session: Optional[requests.Session] = None,
        extractor: Callable[..., Optional[str]] = extract_text,
    ):
        self.timeout = timeout
        self.min_text_length = min_text_length
        self.max_bytes = max_bytes
        self.use_jina = use_jina
        self.session = session or requests.Session()
        self.session.headers.update(BROWSER_HEADERS)
        self.extractor = extractor
        self._last_status: Dict[str, Status] = {}

    def last_status(self, url: str) -> Status:
        return self._last_status.get(url, "")

    async def fetch(self, url: str) -> FetchOutcome:
        return await asyncio.to_thread(self.fetch_sync, url)

    def fetch_sync(self, url: str) -> FetchOutcome:
        outcome = self._fetch_plain(url)
        self._last_status[url] = outcome.status
        if outcome.ok and self._usable(outcome.html):
            return outcome
        if not self.use_jina or outcome.status in NON_RETRYABLE or outcome.status == "invalid_url":
            return outcome
        proxied = self._fetch_jina(url)
        if proxied.ok and self._usable(proxied.html):
            self._last_status[url] = proxied.status
            return proxied
        return outcome

    def _usable(self, html: str) -> bool:
        return bool(self.extractor(html, self.min_text_length))

    def _get(self, url: str, headers: Optional[Dict[str, str]] = None) -> requests.Response:
        return self.session.get(
            url,
            headers=headers,
            timeout=(5, self.timeout),
            allow_redirects=True,
            stream=True,
        )

    def _read_body(self, resp: requests.Response) -> Optional[str]:
        # Size guardrail: read up to max_bytes
        content = b""
        for chunk in resp.iter_content(chunk_size=64 * 1024):
            if not chunk:
                continue
            content += chunk
            if len(content) > self.max_bytes:
                return None
        return content.decode(resp.encoding or "utf-8", errors="replace")

    def _fetch_plain(self, url: str) -> FetchOutcome:
        err = validate_fetch_url(url)
        if err:
            logger.warning(f"Refusing to fetch {url}: {err}")
            return FetchOutcome(html="", method="error", status="invalid_url", url=url)
        try:
            resp = self._get(url)
        except requests.exceptions.Timeout:
            logger.info(f"fetch timeout {url}")
            return FetchOutcome(html="", method="timeout", status="timeout", url=url)
        except requests.exceptions.RequestException as e:
            logger.info(f"fetch failed {url}: {e}")
            return FetchOutcome(html="", method="error", status="request_error", url=url)

        status = int(resp.status_code or 0)
        final_url = str(resp.url or url)
        if status >= 400:
            resp.close()
            return FetchOutcome(html="", method="error", status=status, url=final_url)
        try:
            html = self._read_body(resp)
        except requests.exceptions.RequestException as e:
            logger.info(f"fetch body failed {url}: {e}")
            return FetchOutcome(html="", method="error", status="request_error", url=final_url)
        if html is None:
            return FetchOutcome(html="", method="error", status="too_large", url=final_url)
        if looks_like_captcha(html):
            return FetchOutcome(html="", method="captcha", status="captcha", url=final_url)
        return FetchOutcome(html=html, method="fetch", status=status, url=final_url)

    def _fetch_jina(self, url: str) -> FetchOutcome:
        try:
            resp = self._get(f"{JINA_READER}{url}", headers={"X-Return-Format": "html"})
        except requests.exceptions.Timeout:
            return FetchOutcome(html="", method="timeout", status="timeout", url=url)
        except requests.exceptions.RequestException as e:
            logger.info(f"jina fetch failed {url}: {e}")
            return FetchOutcome(html="", method="error", status="request_error", url=url)
        status = int(resp.status_code or 0)
        if status >= 400:
            resp.close()
            return FetchOutcome(html="", method="error", status=status, url=url)
        try:
            html = self._read_body(resp) or ""
        except requests.exceptions.RequestException as e:
            logger.info(f"jina body failed {url}: {e}")
            return FetchOutcome(html="", method="error", status="request_error", url=url)
        if looks_like_captcha(html):
            return FetchOutcome(html="", method="captcha", status="captcha", url=url)
        return FetchOutcome(html=html, method="jina", status=status, url=url)
