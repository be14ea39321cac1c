"""Verification gate: every piece of retrieved text passes here before it is accepted."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from grinder.events.event_types import Event, is_blank
from grinder.logs import truncate
from grinder.pipeline.pacing import VERIFY, RateLimitLedger, format_countdown
from grinder.verification.verify_article import ArticleVerifier, VerifyResult
from grinder.verification.verify_context import build_verify_context

logger = logging.getLogger(__name__)


def apply_verify_status(event: Event, verify: Optional[VerifyResult]) -> None:
    if verify is None:
        return
    event.verify_state = verify.status or ("ok" if verify.ok else "mismatch")


class VerificationGate:
    def __init__(
        self,
        verifier: ArticleVerifier,
        ledger: RateLimitLedger,
        decoder: Any,
        settings: Any,
        event_log: Any,
        cache: Any = None,
        fetcher: Any = None,
    ):
        self.verifier = verifier
        self.ledger = ledger
        self.decoder = decoder
        self.settings = settings
        self.event_log = event_log
        self.cache = cache
        self.fetcher = fetcher

    def should_verify(self, is_fallback: bool, text_length: int) -> bool:
        mode = self.settings.verify_mode
        if mode == "always":
            return True
        if mode == "fallback":
            return is_fallback
        if mode == "short":
            return text_length < self.settings.verify_short_threshold
        return False

    async def _resolve_original_url(self, event: Event) -> None:
        if not is_blank(event.original.url) or is_blank(event.gn_url):
            return
        decoded = await self.decoder.decode(event.gn_url)
        if decoded and is_blank(event.url):
            event.url = decoded
        event.original.capture_url(event.url)

    async def verify_text(
        self,
        event: Event,
        url: str,
        text: str,
        is_fallback: bool,
        method: str,
        attempt: int = 0,
        html: str = "",
    ) -> VerifyResult:
        """Same-event judgement for ``text`` retrieved from ``url``; status applied to the event."""
        if not self.should_verify(is_fallback, len(text)):
            self.event_log.record(
                event,
                {"phase": "verify", "status": "skipped", "method": method, "attempt": attempt, "textLength": len(text)},
                f"#{event.id} verify skipped ({method})",
            )
            result = VerifyResult.skipped()
            apply_verify_status(event, result)
            return result

        await self._resolve_original_url(event)

        wait_ms = await self.ledger.wait(
            VERIFY,
            on_tick=lambda remaining: logger.debug(f"#{event.id} verify wait {format_countdown(remaining)} left"),
        )
        self.ledger.mark(VERIFY)

        prepare_start = time.monotonic()
        context = await build_verify_context(
            event,
            cache=self.cache,
            fetcher=self.fetcher,
            html_hint=(url, html) if html else None,
            context_max_chars=self.settings.verify_context_max_chars,
        )
        prepare_ms = int((time.monotonic() - prepare_start) * 1000)

        ai_start = time.monotonic()
        result = await self.verifier.verify(
            context,
            url,
            text,
            min_confidence=self.settings.verify_min_confidence,
            fail_open=self.settings.verify_fail_open,
        )
        ai_ms = int((time.monotonic() - ai_start) * 1000)
        result.timings = {"waitMs": wait_ms, "contextMs": prepare_ms, "aiMs": ai_ms}
        apply_verify_status(event, result)

        model_label = result.model
        if model_label and result.use_search:
            model_label = f"{model_label}+search"
        if model_label and result.fallback_used:
            model_label = f"{model_label}+fallback"
        status_message = "unverified (gpt unavailable)" if result.status == "unverified" else result.status
        summary = f" | {truncate(result.page_summary)}" if result.page_summary else ""
        self.event_log.record(
            event,
            {
                "phase": "verify",
                "status": result.status,
                "method": method,
                "attempt": attempt,
                "textLength": len(text),
                "match": result.match,
                "confidence": result.confidence,
                "reason": result.reason,
                "pageSummary": result.page_summary,
                "verified": result.verified,
                "error": result.error,
                "tokens": result.tokens,
                "verifyModel": model_label,
                **result.timings,
            },
            f"#{event.id} verify {status_message} ({method}){summary}",
            "ok" if result.ok else "warn",
        )
        return result
