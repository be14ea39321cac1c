"""Paced access to the Google News redirect decoder."""

from __future__ import annotations

import logging
from typing import Any

from grinder.ingestion.url_utils import is_aggregator_url, normalize_url
from grinder.pipeline.pacing import URL_DECODE, RateLimitLedger, format_countdown

logger = logging.getLogger(__name__)


class PacedDecoder:
    """Wraps a decoder with the url_decode ledger entry and its cooldown signal"""

    def __init__(self, decoder: Any, ledger: RateLimitLedger):
        self.decoder = decoder
        self.ledger = ledger

    def wait_ms(self) -> float:
        return self.ledger.remaining_ms(URL_DECODE)

    async def decode(self, gn_url: str) -> str:
        """Publisher URL for a redirect link ('' on failure or during cooldown).

        Non-aggregator links are returned as-is without touching the ledger.
        """
        gn_url = normalize_url(gn_url)
        if not gn_url:
            return ""
        if not is_aggregator_url(gn_url):
            return gn_url
        cooldown = self.decoder.cooldown_seconds()
        if cooldown > 0:
            logger.info(f"google news decode cooldown active {format_countdown(cooldown * 1000)}")
            return ""
        await self.ledger.wait(URL_DECODE)
        self.ledger.entry(URL_DECODE).bump()
        self.ledger.mark(URL_DECODE)
        logger.info("Decoding URL...")
        return normalize_url(await self.decoder.decode(gn_url))
