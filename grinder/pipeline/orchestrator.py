"""Summarize pass: drives each unresolved event through acquisition and summarization.

Per event:
    cache -> primary URL (direct fetch / browser) -> candidate pool -> external search
then summarization of whatever verified text was found, the completion rule and
a single write of the row. Events are processed strictly one after another.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from grinder.discovery.external_search import build_queries
from grinder.errors import BrowserClosedError
from grinder.events.event_types import ENSURED_COLUMNS, Candidate, ContentSelection, Event, is_blank
from grinder.ingestion.url_utils import is_aggregator_url, normalize_url
from grinder.logs import truncate
from grinder.pipeline.pacing import AI
from grinder.resolve.alternatives import needs_decode
from grinder.resolve.source_levels import source_from_url
from grinder.verification.verify_article import VerifyResult

logger = logging.getLogger(__name__)

DEFERRED = "deferred"
FETCHED = "fetched"
FAILED = "failed"


@dataclass
class CacheAttempt:
    ok: bool = False
    meta_hit: bool = False
    text_hit: bool = False
    mismatch: bool = False
    reason: str = ""
    verify: Optional[VerifyResult] = None


@dataclass
class Failure:
    id: str
    title: str
    source: str = ""
    url: str = ""
    phase: str = ""
    status: str = ""
    method: str = ""
    reason: str = ""

    def line(self) -> str:
        meta = "/".join(p for p in (self.phase, self.status, self.method) if p)
        parts = [p for p in (self.title, self.source, meta) if p]
        if self.reason:
            parts.append(self.reason)
        return f"[fail] #{self.id} " + " | ".join(parts)


@dataclass
class RunReport:
    stats: Dict[str, int] = field(default_factory=lambda: {"ok": 0, "fail": 0})
    failures: List[Failure] = field(default_factory=list)
    backfilled: int = 0
    backfilled_gn: int = 0
    run_ms: float = 0.0


def format_duration(ms: float) -> str:
    seconds = int(ms // 1000)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{seconds:02d}s"
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"


def apply_fallback_selection(event: Event, alt: Candidate, alt_url: str) -> None:
    """Fill blank identity fields from the winning alternative."""
    if is_blank(event.source) and alt.source:
        event.source = alt.source
    if is_blank(event.gn_url) and not is_blank(alt.gn_url):
        event.gn_url = alt.gn_url
    if is_blank(event.title_en) and not is_blank(alt.title_en):
        event.title_en = alt.title_en
    if is_blank(event.url) and alt_url:
        event.url = alt_url
    if is_blank(event.gn_url) and is_blank(event.alternative_url) and not is_blank(alt_url):
        current = normalize_url(event.url)
        if not current or current != alt_url:
            event.alternative_url = alt_url
    event.original.capture_url(event.url)


def infer_source(event: Event) -> None:
    if is_blank(event.source) and event.url and not is_aggregator_url(event.url):
        inferred = source_from_url(event.url)
        if inferred:
            event.source = inferred


class SummarizePipeline:
    """One summarize run over the row store"""

    def __init__(
        self,
        store: Any,
        settings: Any,
        cache: Any,
        retriever: Any,
        gate: Any,
        decoder: Any,
        hydrator: Any,
        resolver: Any,
        external_search: Any,
        summarizer: Any,
        ledger: Any,
        event_log: Any,
    ):
        self.store = store
        self.settings = settings
        self.cache = cache
        self.retriever = retriever
        self.gate = gate
        self.decoder = decoder
        self.hydrator = hydrator
        self.resolver = resolver
        self.external_search = external_search
        self.summarizer = summarizer
        self.ledger = ledger
        self.event_log = event_log

    @property
    def min_text_length(self) -> int:
        return self.settings.min_text_length

    # -----------------------------
    # logging helpers
    # -----------------------------
    def _log(self, event: Event, data: Dict[str, Any], message: str, level: str = "info") -> None:
        self.event_log.record(event, data, message, level)

    def _log_candidate(self, event: Event, candidate: Candidate, status: str, reason: str = "",
                       phase: str = "fallback_candidate", provider: str = "") -> None:
        level = "info" if status in ("accepted", "attempt", "selected") else "warn"
        self._log(
            event,
            {
                "phase": phase,
                "status": status,
                "reason": reason,
                "provider": provider,
                "candidateSource": candidate.source,
                "candidateUrl": candidate.url,
                "candidateGnUrl": candidate.gn_url,
                "candidateTitle": candidate.title_en or candidate.title_ru,
                "candidateOrigin": candidate.origin,
                "candidateLevel": candidate.level,
            },
            f"#{event.id} {phase} {status} {candidate.source}{f' ({reason})' if reason else ''}",
            level,
        )

    # -----------------------------
    # content bookkeeping
    # -----------------------------
    def set_content_source(self, event: Event, url: str, source: str, method: str, is_fallback: bool) -> None:
        """Record which retrieval produced the accepted text; first call wins."""
        if event.content is not None:
            return
        event.content = ContentSelection(url=url or "", source=source or "", method=method or "",
                                         is_fallback=bool(is_fallback))
        event.content_method = event.content.method
        self._log(
            event,
            {
                "phase": "content_selected",
                "status": "ok",
                "contentUrl": event.content.url,
                "contentSource": event.content.source,
                "contentMethod": event.content.method,
                "contentIsFallback": event.content.is_fallback,
                "originalUrl": event.original.url,
                "originalGnUrl": event.original.gn_url,
            },
            f"#{event.id} content selected ({event.content.method})",
        )

    async def decode_event_url(self, event: Event) -> bool:
        decoded = await self.decoder.decode(event.gn_url)
        if decoded:
            event.url = decoded
            event.original.capture_url(event.url)
            self._log(event, {"phase": "decode_url", "status": "ok", "url": event.url}, f"#{event.id} url decoded", "ok")
            return True
        self._log(event, {"phase": "decode_url", "status": "fail"}, f"#{event.id} url decode failed", "warn")
        return False

    # -----------------------------
    # cache
    # -----------------------------
    async def try_cache(self, event: Event, url: str, is_fallback: bool = False, content_source: str = "") -> CacheAttempt:
        cache_url = url
        alias = self.cache.resolve_alias(url)
        alias_used = bool(alias) and alias != url
        if alias_used:
            cache_url = alias

        probe = self.cache.probe(cache_url, event)
        if not probe.available:
            if probe.reason == "missing":
                self._log(event, {"phase": "cache", "status": "miss", "reason": "no_files", "cacheKey": probe.key,
                                  "cacheUrl": probe.url}, f"#{event.id} cache miss (no files)", "warn")
                return CacheAttempt(reason="no_files")
            self._log(event, {"phase": "cache", "status": "skip", "reason": probe.reason},
                      f"#{event.id} cache skip ({probe.reason})", "warn")
            return CacheAttempt(reason=probe.reason)
        self._log(event, {"phase": "cache", "status": "probe", "cacheKey": probe.key, "cacheUrl": probe.url,
                          "hasHtml": probe.has_html, "hasTxt": probe.has_txt}, f"#{event.id} cache probe", "debug")

        meta_hit = self.cache.backfill_meta(event, cache_url)
        text_hit = self.cache.backfill_text(event, cache_url)
        text_length = len(event.text or "")
        if not text_hit and probe.has_txt and not event.text:
            text_length = len(self.cache.read_text(cache_url, event))
        if not text_hit:
            cached_html = self.cache.read_html(cache_url, event)
            if cached_html:
                extracted = self.retriever.extract(cached_html)
                if extracted and len(extracted) > self.min_text_length:
                    event.text = extracted
                    text_hit = True
                    text_length = len(extracted)
                    self.cache.write_text(event, extracted, cache_url)
        short_text = not text_hit and 0 < text_length <= self.min_text_length
        if short_text:
            self._log(event, {"phase": "cache", "status": "miss", "reason": "short_text", "cacheUrl": cache_url,
                              "cacheKey": probe.key, "textLength": text_length},
                      f"#{event.id} cache miss (short text)", "warn")
        if meta_hit or text_hit:
            self._log(event, {"phase": "cache", "status": "hit", "cacheMeta": meta_hit, "cacheText": text_hit,
                              "cacheUrl": cache_url, "cacheKey": probe.key, "cacheAliasUsed": alias_used},
                      f"#{event.id} cache hit")
        elif not short_text and not is_blank(url) and len(event.text or "") <= self.min_text_length:
            self._log(event, {"phase": "cache", "status": "miss", "cacheUrl": cache_url, "cacheKey": probe.key},
                      f"#{event.id} cache miss", "warn")

        if len(event.text or "") <= self.min_text_length:
            return CacheAttempt(meta_hit=meta_hit, text_hit=text_hit, reason="no_text")

        verify = await self.gate.verify_text(event, url, event.text, is_fallback, "cache", 0)
        if verify.ok:
            self.set_content_source(
                event, url, content_source or event.original.source or event.source, "cache", is_fallback
            )
            return CacheAttempt(ok=True, meta_hit=meta_hit, text_hit=text_hit, verify=verify)

        self._log(event, {"phase": "cache_verify", "status": "mismatch", "reason": verify.reason,
                          "pageSummary": verify.page_summary}, f"#{event.id} cached text mismatch", "warn")
        self._log(event, {"phase": "cache", "status": "reject", "reason": "verify_mismatch"},
                  f"#{event.id} cache rejected (verify mismatch)", "warn")
        event.reset_text_fields()
        return CacheAttempt(meta_hit=meta_hit, text_hit=text_hit, mismatch=True, verify=verify)

    # -----------------------------
    # primary URL
    # -----------------------------
    async def fetch_primary(self, event: Event) -> bool:
        infer_source(event)
        logger.info(f"Fetching {event.source or ''} article...")
        result = await self.retriever.fetch_text_with_retry(event, event.url, is_fallback=False, origin="original")
        if result.ok:
            logger.info(f"got {len(result.text)} chars")
            self.cache.write(event, result.html, result.text, result.url or event.url)
            if is_blank(event.gn_url):
                await self.hydrator.backfill_gn_url(event)
            self.set_content_source(event, result.url or event.url, event.source, result.method or "fetch", False)
            return True
        if result.mismatch:
            self._log(event, {"phase": "verify_mismatch", "status": "fail", "pageSummary": result.verify.page_summary,
                              "reason": result.verify.reason}, f"#{event.id} text mismatch, switching to fallback", "warn")
        return False

    # -----------------------------
    # alternatives
    # -----------------------------
    async def try_alternative(self, event: Event, alt: Candidate, allow_wait: bool) -> str:
        alt_url = normalize_url(alt.url)
        decode_method = "direct" if alt_url else "gn"
        if not alt_url and alt.gn_url:
            if not allow_wait and needs_decode(alt):
                wait_ms = self.decoder.wait_ms()
                if wait_ms > 0:
                    self._log(event, {"phase": "fallback_decode", "status": "deferred", "candidateSource": alt.source,
                                      "level": alt.level, "method": decode_method, "waitMs": int(wait_ms)},
                              f"#{event.id} fallback decode deferred ({alt.source})", "debug")
                    return DEFERRED
            alt_url = await self.decoder.decode(alt.gn_url)
        if not alt_url:
            self._log(event, {"phase": "fallback_decode", "status": "fail", "candidateSource": alt.source,
                              "level": alt.level, "method": decode_method},
                      f"#{event.id} fallback decode failed ({alt.source})", "warn")
            self._log_candidate(event, alt, "rejected", "decode_fail", phase="fallback_attempt")
            return FAILED

        logger.info(f"Trying alternative source {alt.source} (level {alt.level})...")
        self._log_candidate(event, alt, "attempt", phase="fallback_attempt")
        self._log(event, {"phase": "fallback_decode", "status": "ok", "candidateSource": alt.source,
                          "level": alt.level, "method": decode_method, "url": alt_url},
                  f"#{event.id} fallback url decoded ({alt.source})", "ok")

        cached = await self.try_cache(event, alt_url, is_fallback=True, content_source=alt.source)
        if cached.ok:
            apply_fallback_selection(event, alt, alt_url)
            self._selected(event, alt)
            return FETCHED

        result = await self.retriever.fetch_text_with_retry(event, alt_url, is_fallback=True, origin=alt.origin)
        if result.ok:
            apply_fallback_selection(event, alt, alt_url)
            logger.info(f"got {len(result.text)} chars")
            self.cache.write(event, result.html, result.text, result.url or alt_url)
            if is_blank(event.gn_url):
                await self.hydrator.backfill_gn_url(event)
            self.set_content_source(event, result.url or alt_url, event.source or alt.source,
                                    result.method or "fetch", True)
            self._selected(event, alt)
            return FETCHED
        if result.mismatch:
            self._log(event, {"phase": "fallback_verify_mismatch", "status": "fail", "candidateSource": alt.source,
                              "level": alt.level, "pageSummary": result.verify.page_summary,
                              "reason": result.verify.reason}, f"#{event.id} fallback text mismatch ({alt.source})", "warn")
            self._log_candidate(event, alt, "rejected", "verify_mismatch", phase="fallback_attempt")
        else:
            reason = f"blocked_{result.blocked_status or 'unknown'}" if result.blocked else "no_text"
            self._log_candidate(event, alt, "rejected", reason, phase="fallback_attempt")
        return FAILED

    def _selected(self, event: Event, alt: Candidate) -> None:
        self._log(event, {"phase": "fallback_selected", "status": "ok", "candidateSource": alt.source,
                          "level": alt.level}, f"#{event.id} fallback selected {alt.source}", "ok")
        self._log_candidate(event, alt, "selected", phase="fallback_attempt")

    async def try_candidates(self, event: Event, candidates: List[Candidate]) -> bool:
        """Immediate candidates in order; at most one deferred decode retried with waiting."""
        deferred: Optional[Candidate] = None
        for alt in candidates:
            outcome = await self.try_alternative(event, alt, allow_wait=False)
            if outcome == DEFERRED:
                deferred = alt
                break
            if outcome == FETCHED:
                return True
        if deferred is not None:
            return await self.try_alternative(event, deferred, allow_wait=True) == FETCHED
        return False

    async def search_external(self, event: Event) -> List[Candidate]:
        search = self.external_search
        provider = getattr(search, "provider", "") if search is not None else ""
        reason = ""
        queries: List[str] = []
        if search is None or not search.enabled:
            reason = "disabled"
        elif not search.api_key:
            reason = "missing_api_key"
        else:
            queries = build_queries(event)
            if not queries:
                reason = "no_queries"
        if reason:
            self._log(event, {"phase": "external_search", "status": "skipped", "reason": reason, "provider": provider},
                      f"#{event.id} external search skipped ({reason.replace('_', ' ')})", "warn")
            return []

        results: List[Candidate] = []
        for query in queries:
            self._log(event, {"phase": "external_search", "status": "query", "provider": provider, "query": query},
                      f"#{event.id} external_search query")
            found = await search.search(query)
            self._log(
                event,
                {
                    "phase": "external_search",
                    "status": "ok" if found else "empty",
                    "provider": provider,
                    "query": query,
                    "count": len(found),
                    "results": [
                        {"source": c.source, "title": truncate(c.title_en, 140), "url": c.url, "origin": c.origin}
                        for c in found[:8]
                    ],
                },
                f"#{event.id} external_search {len(found)}",
                "info" if found else "warn",
            )
            results.extend(found)
        return results

    async def fallback(self, event: Event) -> bool:
        if not self.resolver.classify(event).accepted:
            await self.hydrator.hydrate(event)
        classified = self.resolver.classify(event)
        for alt in classified.accepted:
            self._log_candidate(event, alt, "accepted")
        for alt in classified.rejected:
            self._log_candidate(event, alt, "rejected", alt.reason or "filtered")
        if not classified.accepted:
            self._log(event, {"phase": "fallback_candidates", "status": "empty"},
                      f"#{event.id} no fallback candidates", "warn")

        if await self.try_candidates(event, classified.accepted):
            return True

        external = await self.search_external(event)
        if external:
            provider = getattr(self.external_search, "provider", "")
            found = self.resolver.classify(event, external)
            for alt in found.accepted:
                self._log_candidate(event, alt, "accepted", phase="external_candidate", provider=provider)
            for alt in found.rejected:
                self._log_candidate(event, alt, "rejected", alt.reason or "filtered",
                                    phase="external_candidate", provider=provider)
            if found.accepted and await self.try_candidates(event, found.accepted):
                return True

        self._log(event, {"phase": "fallback_failed", "status": "fail"}, f"#{event.id} fallback exhausted", "warn")
        return False

    # -----------------------------
    # summarization
    # -----------------------------
    async def summarize_event(self, event: Event) -> None:
        await self.ledger.wait(AI)
        self.ledger.mark(AI)
        logger.info(f"Summarizing {len(event.text)} chars...")
        start = time.monotonic()
        res = await self.summarizer.summarize(event)
        duration_ms = int((time.monotonic() - start) * 1000)
        self._log(
            event,
            {
                "phase": "summarize",
                "status": "ok" if res else "empty",
                "durationMs": duration_ms,
                "inputChars": len(event.text),
                "outputChars": len(res.summary) if res else 0,
                "model": res.model if res else None,
            },
            f"#{event.id} summarize {duration_ms}ms",
            "info" if res else "warn",
        )
        if not res:
            return
        self.ledger.set_delay(AI, res.delay)
        if is_blank(event.topic):
            event.topic = res.topic
        if is_blank(event.priority):
            event.priority = res.priority
        if is_blank(event.title_ru):
            event.title_ru = res.title_translated
        if is_blank(event.summary):
            event.summary = res.summary
        if is_blank(event.ai_topic):
            event.ai_topic = res.topic
        if is_blank(event.ai_priority):
            event.ai_priority = res.priority

    # -----------------------------
    # per event
    # -----------------------------
    async def process_event(self, base: Event, index: int, report: RunReport, total: int, position: int) -> None:
        e = base.clone()
        if not e.id:
            e.id = base.id or str(index + 1)
        e.capture_original(base)
        if is_blank(e.gn_url):
            if await self.hydrator.backfill_gn_url(e):
                report.backfilled_gn += 1
        if is_blank(e.gn_url) or is_blank(e.title_en) or is_blank(e.source):
            await self.hydrator.hydrate(e)
        e.capture_original()
        e.gn_url = normalize_url(e.gn_url)
        if is_blank(e.url) and not is_blank(e.gn_url) and len(e.text or "") <= self.min_text_length:
            await self.decode_event_url(e)
        e.url = normalize_url(e.url)

        cached = await self.try_cache(e, e.url, is_fallback=False, content_source=e.source)
        if cached.meta_hit:
            report.backfilled += 1
        needs_text_fields = e.needs_text_fields
        has_text = len(e.text or "") > self.min_text_length
        method_note = f" | method={e.content_method}" if e.content_method else ""
        logger.info(f"#{e.id} [{position}/{total}] {e.title}{method_note}")

        if (has_text or not needs_text_fields) and is_blank(e.url) and not is_blank(e.gn_url):
            await self.decode_event_url(e)
        infer_source(e)

        if needs_text_fields and not has_text:
            fetched = False
            if is_blank(e.url) and not is_blank(e.gn_url):
                await self.decode_event_url(e)
            if not is_blank(e.url):
                fetched = await self.fetch_primary(e)
            if not fetched:
                await self.fallback(e)

        if needs_text_fields and len(e.text or "") > self.min_text_length:
            await self.summarize_event(e)

        if is_blank(e.summary):
            self._log(e, {"phase": "summary", "status": "missing"}, f"#{e.id} summary missing", "warn")
        if is_blank(e.gn_url) and not is_blank(base.gn_url):
            e.gn_url = base.gn_url

        missing = e.missing_fields()
        complete = not missing
        verified_ok = e.verify_state in ("ok", "skipped")
        e.verify_status = "ok" if complete and verified_ok else ""
        if complete and verified_ok:
            report.stats["ok"] += 1
        else:
            report.stats["fail"] += 1
            last = self.event_log.last_outcome(e)
            if missing:
                reason = f"missing: {', '.join(missing)}"
            elif not verified_ok:
                reason = f"verify status: {e.verify_state or 'unknown'}"
            else:
                reason = last.reason
            report.failures.append(
                Failure(id=e.id, title=e.title, source=e.source, url=e.url, phase=last.phase,
                        status=last.status, method=last.method, reason=reason)
            )

        e.commit_into(base)
        saved = await asyncio.to_thread(self.store.save_row, index, base)
        if not saved:
            logger.warning(f"#{e.id} row save failed")

    # -----------------------------
    # run
    # -----------------------------
    def log_report(self, report: RunReport) -> None:
        if report.failures:
            limit = self.settings.fail_summary_limit or 0
            logger.info(f"Failed rows: {len(report.failures)}")
            items = report.failures[:limit] if limit > 0 else report.failures
            for item in items:
                logger.info(item.line())
            if limit > 0 and len(report.failures) > limit:
                logger.info(f"... {len(report.failures) - limit} more")
        if report.backfilled:
            logger.info(f"backfilled metadata for {report.backfilled} rows")
        if report.backfilled_gn:
            logger.info(f"backfilled google news links for {report.backfilled_gn} rows")
        logger.info(f"run time: {format_duration(report.run_ms)}")
        logger.info(f"stats: {report.stats}")

    async def run(self, events: List[Event]) -> RunReport:
        """Process every event whose verifyStatus is not 'ok'; rows are saved one by one."""
        report = RunReport()
        start = time.monotonic()
        self.store.pause_autosave()
        try:
            self.store.ensure_columns(ENSURED_COLUMNS)
            pending = [(i, e) for i, e in enumerate(events) if (e.verify_status or "").strip().lower() != "ok"]
            self.cache.build_alias_index()
            for position, (index, base) in enumerate(pending, start=1):
                await self.process_event(base, index, report, len(pending), position)
            report.run_ms = (time.monotonic() - start) * 1000
            self.log_report(report)
            return report
        except BrowserClosedError:
            logger.error("[fatal] browser window closed; stopping summarize")
            raise
        finally:
            self.store.resume_autosave(flush=False)
