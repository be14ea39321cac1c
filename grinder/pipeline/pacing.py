"""Per-dependency pacing ledger.

One ledger per run. Each entry remembers when its dependency was last called and
the minimum gap before the next call; callers wait, then mark the call.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

URL_DECODE = "url_decode"
VERIFY = "verify"
AI = "ai"
GN_SEARCH = "gn_search"


@dataclass
class PaceEntry:
    time_ms: float = 0.0
    delay_ms: float = 0.0
    increment_ms: float = 0.0
    max_delay_ms: Optional[float] = None

    def bump(self) -> None:
        """Grow the delay by the increment, capped at the maximum."""
        cap = self.max_delay_ms if self.max_delay_ms is not None else self.delay_ms
        self.delay_ms = min(self.delay_ms + self.increment_ms, cap)


def format_countdown(ms: float) -> str:
    total = max(0, int(-(-(ms or 0) // 1000)))
    minutes, seconds = divmod(total, 60)
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"


class RateLimitLedger:
    """Last-call time and current delay per external dependency"""

    def __init__(
        self,
        entries: Optional[Dict[str, PaceEntry]] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.entries: Dict[str, PaceEntry] = entries or {}
        self.clock = clock
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "RateLimitLedger":
        return cls(
            {
                URL_DECODE: PaceEntry(
                    delay_ms=settings.url_decode_delay_ms,
                    increment_ms=settings.url_decode_increment_ms,
                    max_delay_ms=settings.url_decode_max_delay_ms,
                ),
                AI: PaceEntry(delay_ms=0),
                VERIFY: PaceEntry(delay_ms=settings.verify_delay_ms),
                GN_SEARCH: PaceEntry(delay_ms=settings.gn_search_delay_ms),
            },
            **kwargs,
        )

    def now_ms(self) -> float:
        return self.clock() * 1000

    def entry(self, name: str) -> PaceEntry:
        return self.entries.setdefault(name, PaceEntry())

    def remaining_ms(self, name: str) -> float:
        e = self.entry(name)
        return max(0.0, e.time_ms + e.delay_ms - self.now_ms())

    def mark(self, name: str) -> None:
        self.entry(name).time_ms = self.now_ms()

    def set_delay(self, name: str, delay_ms: float) -> None:
        self.entry(name).delay_ms = max(0.0, float(delay_ms))

    async def wait(
        self,
        name: str,
        on_tick: Optional[Callable[[float], None]] = None,
        interval_ms: float = 1000,
    ) -> float:
        """Suspend until the entry allows the next call; returns waited ms."""
        total = self.remaining_ms(name)
        if total <= 0:
            return 0.0
        logger.debug(f"pacing {name}: waiting {format_countdown(total)}")
        start = self.now_ms()
        remaining = total
        if on_tick:
            on_tick(remaining)
        while remaining > 0:
            step = min(interval_ms, remaining)
            await self.sleep(step / 1000)
            remaining = max(0.0, total - (self.now_ms() - start))
            if on_tick:
                on_tick(remaining)
        return self.now_ms() - start
