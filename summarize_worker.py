#!/usr/bin/env python3
"""Summarize worker.

Loads unresolved events from Postgres, acquires and verifies article text for
each one, summarizes it and writes the row back.
"""

from __future__ import annotations

import asyncio
import logging

from dotenv import load_dotenv

from grinder.cache.article_cache import ArticleCache
from grinder.config import Settings
from grinder.discovery.external_search import NewsApiSearch
from grinder.discovery.google_news import GoogleNewsDecoder, GoogleNewsHydrator, GoogleNewsSearch
from grinder.errors import BrowserClosedError, StoreError
from grinder.fetching.browser import ArticleBrowser, PlaywrightDriver
from grinder.fetching.cooldown import DomainCooldowns
from grinder.fetching.direct_fetch import DirectFetcher
from grinder.fetching.retrieval import Retriever
from grinder.logs import EventLog, configure_logging
from grinder.pipeline.decode import PacedDecoder
from grinder.pipeline.orchestrator import SummarizePipeline
from grinder.pipeline.pacing import RateLimitLedger
from grinder.pipeline.summarizer import Summarizer
from grinder.resolve.alternatives import AlternativeResolver
from grinder.storage.postgres_events import PostgresEventStore
from grinder.storage.postgres_schema import ensure_events_schema
from grinder.verification.gate import VerificationGate
from grinder.verification.verify_article import ArticleVerifier

logger = logging.getLogger("summarize_worker")


async def run(settings: Settings) -> int:
    ensure_events_schema(settings.pg_dsn, table=settings.events_table)
    store = PostgresEventStore(settings.pg_dsn, table=settings.events_table)
    events = store.load()

    event_log = EventLog(settings.fetch_log_file)
    ledger = RateLimitLedger.from_settings(settings)
    cache = ArticleCache(
        settings.cache_dir,
        max_text_length=settings.max_text_length,
        min_text_length=settings.min_text_length,
    )
    fetcher = DirectFetcher(timeout=settings.request_timeout, min_text_length=settings.min_text_length)
    driver = PlaywrightDriver(headless=settings.browser_headless)
    browser = ArticleBrowser(driver, DomainCooldowns(), archive_skip_domains=settings.archive_skip_domains)
    decoder = PacedDecoder(GoogleNewsDecoder(cooldown_ms=settings.url_decode_cooldown_ms), ledger)
    resolver = AlternativeResolver.from_settings(settings)
    gate = VerificationGate(
        ArticleVerifier.from_settings(settings),
        ledger,
        decoder,
        settings,
        event_log,
        cache=cache,
        fetcher=fetcher,
    )
    pipeline = SummarizePipeline(
        store=store,
        settings=settings,
        cache=cache,
        retriever=Retriever(fetcher, browser, gate, settings, event_log),
        gate=gate,
        decoder=decoder,
        hydrator=GoogleNewsHydrator(GoogleNewsSearch(), ledger, resolver, event_log),
        resolver=resolver,
        external_search=NewsApiSearch.from_settings(settings),
        summarizer=Summarizer.from_settings(settings),
        ledger=ledger,
        event_log=event_log,
    )
    try:
        await pipeline.run(events)
    finally:
        await driver.close()
        store.close()
    return 0


def main() -> int:
    load_dotenv()
    settings = Settings.from_env()
    configure_logging(settings.log_file)
    if not settings.pg_dsn:
        logger.error("PG_DSN is not set")
        return 1
    try:
        return asyncio.run(run(settings))
    except BrowserClosedError:
        return 3
    except StoreError as e:
        logger.error(f"Row store error: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
