"""Per-domain cooldowns for the browser fetch."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from grinder.ingestion.url_utils import host_of

logger = logging.getLogger(__name__)

CAPTCHA_COOLDOWN_MS = 10 * 60_000
TIMEOUT_COOLDOWN_MS = 2 * 60_000


@dataclass(frozen=True)
class Cooldown:
    host: str
    until_ms: float
    reason: str
    remaining_ms: float


class DomainCooldowns:
    """host -> time until which live navigation is skipped"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._until: Dict[str, tuple] = {}

    def _now_ms(self) -> float:
        return self.clock() * 1000

    def set(self, url: str, duration_ms: float, reason: str = "") -> None:
        host = host_of(url)
        if not host:
            return
        until = self._now_ms() + duration_ms
        current = self._until.get(host)
        if current and current[0] >= until:
            return
        self._until[host] = (until, reason)
        logger.info(f"domain cooldown {host} {int(duration_ms / 1000)}s ({reason})")

    def get(self, url: str) -> Optional[Cooldown]:
        host = host_of(url)
        entry = self._until.get(host)
        if not entry:
            return None
        until, reason = entry
        remaining = until - self._now_ms()
        if remaining <= 0:
            del self._until[host]
            return None
        return Cooldown(host=host, until_ms=until, reason=reason, remaining_ms=remaining)
