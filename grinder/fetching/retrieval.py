"""Per-URL retrieval: direct fetch, then the browser, each result through the gate.

fetch_text_with_retry makes up to ``fetch_attempts`` passes over one URL and
returns an AttemptResult whose ``status`` is one of:

    ok        verified (or unverified under fail-open / skipped) text
    mismatch  text was found but describes a different event
    blocked   the origin refuses us (429/403/503/captcha); try something else
    exhausted nothing usable after every attempt
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from grinder.errors import BrowseError, BrowserClosedError, BrowseTimeoutError, CaptchaError
from grinder.events.event_types import Event
from grinder.extraction.meta_extract import PageMeta, apply_meta, extract_meta
from grinder.extraction.page_state import classify_page_state, title_preview
from grinder.extraction.text_extract import extract_text
from grinder.fetching.browser import BrowseResult
from grinder.fetching.direct_fetch import NON_RETRYABLE
from grinder.verification.verify_article import VerifyResult

logger = logging.getLogger(__name__)

Status = Union[int, str]


@dataclass
class AttemptResult:
    status: str
    html: str = ""
    text: str = ""
    verify: Optional[VerifyResult] = None
    method: str = ""
    url: str = ""
    meta: PageMeta = field(default_factory=PageMeta)
    blocked_status: Status = ""
    last_status: str = ""
    last_method: str = ""
    page_state: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def mismatch(self) -> bool:
        return self.status == "mismatch"

    @property
    def blocked(self) -> bool:
        return self.status == "blocked"


def normalize_fetch_status(value: Any) -> Status:
    if value is None:
        return ""
    if isinstance(value, int):
        return value
    text = str(value).strip().lower()
    if text.isdigit():
        return int(text)
    return text


def blocked_label(status: Status) -> str:
    if status == "captcha":
        return "captcha"
    if status in (429, 503):
        return "rate_limited"
    return "forbidden"


@dataclass
class _BrowseAttempt:
    html: str = ""
    meta: PageMeta = field(default_factory=PageMeta)
    failed: bool = False
    abort_reason: str = ""


class Retriever:
    def __init__(
        self,
        fetcher: Any,
        browser: Any,
        gate: Any,
        settings: Any,
        event_log: Any,
        extractor: Callable[..., Optional[str]] = extract_text,
    ):
        self.fetcher = fetcher
        self.browser = browser
        self.gate = gate
        self.settings = settings
        self.event_log = event_log
        self.extractor = extractor

    def extract(self, html: str) -> str:
        if not html:
            return ""
        return self.extractor(html, self.settings.min_text_length, self.settings.max_html_to_text_chars) or ""

    async def _browse(self, event: Event, url: str, is_fallback: bool, attempt: int) -> _BrowseAttempt:
        try:
            result: BrowseResult = await self.browser.browse(url, ignore_cooldown=not is_fallback)
        except BrowserClosedError:
            raise
        except CaptchaError:
            self.event_log.record(
                event,
                {"phase": "browse", "method": "browse", "status": "captcha", "attempt": attempt},
                f"#{event.id} browse captcha",
                "warn",
            )
            return _BrowseAttempt(abort_reason="captcha")
        except BrowseTimeoutError:
            self.event_log.record(
                event,
                {"phase": "browse", "method": "browse", "status": "timeout", "attempt": attempt},
                f"#{event.id} browse timeout",
                "warn",
            )
            return _BrowseAttempt(failed=True, abort_reason="timeout")
        except BrowseError as e:
            self.event_log.record(
                event,
                {"phase": "browse", "method": "browse", "status": "error", "error": str(e), "errorCode": e.code},
                f"#{event.id} browse failed",
                "warn",
            )
            return _BrowseAttempt(failed=True, abort_reason="error")
        return _BrowseAttempt(html=result.html or "", meta=result.meta or PageMeta())

    async def fetch_text_with_retry(
        self,
        event: Event,
        url: str,
        is_fallback: bool = False,
        origin: str = "",
    ) -> AttemptResult:
        attempts = max(1, int(self.settings.fetch_attempts))
        last_status = ""
        last_method = ""
        page_state = ""

        for attempt in range(1, attempts + 1):
            blocked_status: Status = ""
            mismatch: Optional[AttemptResult] = None

            # direct fetch (plain, then the reader proxy)
            outcome = await self.fetcher.fetch(url)
            html = outcome.html
            fetch_method = outcome.method
            if fetch_method in ("fetch", "jina"):
                last_method = fetch_method
            elif fetch_method in ("captcha", "timeout"):
                last_status, last_method = fetch_method, "fetch"
            fetch_meta = extract_meta(html) if html else PageMeta()
            text = self.extract(html)
            page_state = classify_page_state(html, fetch_meta.title)
            status = normalize_fetch_status(self.fetcher.last_status(url) or outcome.status or last_status)

            if not text and status in NON_RETRYABLE:
                label = blocked_label(status)
                self.event_log.record(
                    event,
                    {
                        "phase": "fetch",
                        "method": "fetch",
                        "status": label,
                        "attempt": attempt,
                        "httpStatus": status if isinstance(status, int) else None,
                    },
                    f"#{event.id} fetch {label} ({status})",
                    "warn",
                )
                last_status, last_method = label, "fetch"
                blocked_status = status
            if not text and status == 504:
                last_status, last_method = "504", "fetch"
            if not text and status in ("timeout", "captcha"):
                last_status, last_method = str(status), "fetch"
            if not text and not last_status:
                last_status, last_method = "no_text", "fetch"

            if text:
                method = fetch_method or "fetch"
                self.event_log.record(
                    event,
                    {"phase": "fetch", "method": method, "status": "ok", "attempt": attempt, "textLength": len(text)},
                    f"#{event.id} {method} ok ({attempt}/{attempts})",
                    "ok",
                )
                verify = await self.gate.verify_text(event, url, text, is_fallback, method, attempt, html=html)
                if verify.ok:
                    if not fetch_meta.empty:
                        apply_meta(event, fetch_meta, method)
                    return AttemptResult("ok", html=html, text=text, verify=verify, method=method, url=url,
                                         meta=fetch_meta)
                if verify.status == "mismatch":
                    mismatch = AttemptResult("mismatch", html=html, text=text, verify=verify, method=method, url=url)
            else:
                self.event_log.record(
                    event,
                    {
                        "phase": "fetch",
                        "method": "fetch",
                        "status": "no_text",
                        "attempt": attempt,
                        "pageState": page_state,
                        "pageTitle": title_preview(html),
                    },
                    f"#{event.id} fetch no text ({attempt}/{attempts})",
                    "warn",
                )

            if mismatch is not None and not self.settings.browse_on_mismatch:
                return mismatch

            # headless browser (archive mirror, then the live page)
            browsed = await self._browse(event, url, is_fallback, attempt)
            html = browsed.html
            browse_meta = browsed.meta
            if browse_meta.empty and html:
                browse_meta = extract_meta(html)
            page_state = classify_page_state(html, browse_meta.title)
            text = self.extract(html)
            if not text and browsed.abort_reason:
                last_status, last_method = browsed.abort_reason, "playwright"

            if text:
                self.event_log.record(
                    event,
                    {"phase": "fetch", "method": "browse", "status": "ok", "attempt": attempt, "textLength": len(text)},
                    f"#{event.id} browse ok ({attempt}/{attempts})",
                    "ok",
                )
                verify = await self.gate.verify_text(event, url, text, is_fallback, "browse", attempt, html=html)
                if verify.ok:
                    if not browse_meta.empty:
                        apply_meta(event, browse_meta, "browse")
                    return AttemptResult("ok", html=html, text=text, verify=verify, method="browse", url=url,
                                         meta=browse_meta)
                if verify.status == "mismatch":
                    mismatch = AttemptResult("mismatch", html=html, text=text, verify=verify, method="browse", url=url)
            elif not browsed.failed and not browsed.abort_reason:
                self.event_log.record(
                    event,
                    {"phase": "fetch", "method": "browse", "status": "no_text", "attempt": attempt,
                     "pageState": page_state},
                    f"#{event.id} browse no text ({attempt}/{attempts})",
                    "warn",
                )

            if mismatch is not None:
                return mismatch
            logger.info(f"article text missing ({attempt}/{attempts})")
            if blocked_status != "":
                return AttemptResult("blocked", blocked_status=blocked_status, last_status=last_status,
                                     last_method=last_method, page_state=page_state)

        self.event_log.record(
            event,
            {"phase": "fetch", "status": "no_text", "attempts": attempts, "pageState": page_state},
            f"#{event.id} no text after {attempts} attempts",
            "warn",
        )
        return AttemptResult(
            "exhausted",
            last_status=last_status or "no_text",
            last_method=last_method or "fetch",
            page_state=page_state,
        )
