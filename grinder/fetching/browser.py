"""Headless-browser fetch: archive mirror first, then the live page.

Failure contract:
- CaptchaError       captcha on the live page (domain cooled down 10 min)
- BrowseTimeoutError navigation / network-idle timeout (domain cooled down 2 min)
- BrowserClosedError the browser window is gone; callers must stop the run
- BrowseError        anything else
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from grinder.errors import BrowseError, BrowserClosedError, BrowseTimeoutError, CaptchaError
from grinder.extraction.meta_extract import PageMeta, extract_meta
from grinder.extraction.page_state import looks_like_captcha
from grinder.fetching.cooldown import CAPTCHA_COOLDOWN_MS, TIMEOUT_COOLDOWN_MS, DomainCooldowns
from grinder.ingestion.url_utils import host_of, strip_query

logger = logging.getLogger(__name__)

ARCHIVE_MIRROR = "https://archive.ph/"
ARCHIVE_NO_RESULTS = ("no results", "no archive", "nothing found", "not in archive")
CAPTCHA_FRAME_SELECTORS = (
    'iframe[src*="recaptcha"]',
    'iframe[src*="hcaptcha"]',
    'iframe[src*="challenges.cloudflare.com"]',
    "#challenge-form",
    "#px-captcha",
)
NAV_TIMEOUT_MS = 10_000


def is_browser_closed_error(error: BaseException) -> bool:
    message = str(error).lower()
    return (
        ("target page" in message and "has been closed" in message)
        or "context or browser has been closed" in message
        or "browser has been closed" in message
        or "target closed" in message
        or type(error).__name__ == "TargetClosedError"
    )


def is_timeout_error(error: BaseException) -> bool:
    return isinstance(error, PlaywrightTimeoutError) or "timeout" in str(error).lower()


def to_browse_error(error: BaseException) -> BrowseError:
    if isinstance(error, BrowseError):
        return error
    if is_browser_closed_error(error):
        return BrowserClosedError()
    return BrowseError(f"Browse failed: {error}")


@dataclass
class BrowseResult:
    html: str = ""
    meta: PageMeta = field(default_factory=PageMeta)
    source: str = ""


class PlaywrightDriver:
    """Owns one Chromium page for the whole run"""

    def __init__(self, headless: bool = True):
        self.headless = headless
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    async def get_page(self) -> Any:
        if self._page is not None:
            return self._page
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=["--no-sandbox", "--disable-dev-shm-usage"],
        )
        self._context = await self._browser.new_context()
        self._page = await self._context.new_page()
        return self._page

    async def detect_captcha(self, page: Any) -> bool:
        try:
            for selector in CAPTCHA_FRAME_SELECTORS:
                if await page.query_selector(selector):
                    return True
            title = await page.title()
            html = await page.content()
        except PlaywrightError as e:
            if is_browser_closed_error(e):
                raise BrowserClosedError() from e
            logger.debug(f"captcha probe failed: {e}")
            return False
        return looks_like_captcha(html, title or "")

    async def get_meta(self, page: Any) -> PageMeta:
        return extract_meta(await page.content())

    async def close(self) -> None:
        try:
            if self._browser is not None:
                await self._browser.close()
            if self._playwright is not None:
                await self._playwright.stop()
        except PlaywrightError as e:
            logger.debug(f"browser close: {e}")
        finally:
            self._page = None
            self._context = None
            self._browser = None
            self._playwright = None


class ArticleBrowser:
    def __init__(
        self,
        driver: Any,
        cooldowns: DomainCooldowns,
        archive_skip_domains: Iterable[str] = (),
        nav_timeout_ms: int = NAV_TIMEOUT_MS,
    ):
        self.driver = driver
        self.cooldowns = cooldowns
        self.archive_skip_domains = tuple(archive_skip_domains)
        self.nav_timeout_ms = nav_timeout_ms

    def _skip_archive(self, url: str) -> bool:
        host = host_of(url)
        return any(host == d or host.endswith("." + d) for d in self.archive_skip_domains)

    async def _archive_no_results(self, page: Any) -> bool:
        try:
            text = (await page.text_content("body") or "").lower()
        except PlaywrightError as e:
            if is_browser_closed_error(e):
                raise
            return False
        return any(marker in text for marker in ARCHIVE_NO_RESULTS)

    async def _browse_archive(self, page: Any, url: str) -> str:
        logger.info("Browsing archive...")
        await page.goto(f"{ARCHIVE_MIRROR}{strip_query(url)}", wait_until="load")
        if await self.driver.detect_captcha(page):
            logger.warning("captcha detected on archive; skipping archive")
            return ""
        if await self._archive_no_results(page):
            logger.warning("archive has no results; skipping archive")
            return ""
        versions = await page.query_selector_all(".TEXT-BLOCK > a")
        if versions:
            logger.info("going to the newest version...")
            await versions[0].click()
            await page.wait_for_load_state("load")
        return await page.evaluate(
            "() => [...document.querySelectorAll('.body')].map(x => x.innerHTML).join('')"
        ) or ""

    async def _wait(self, url: str, step) -> None:
        try:
            await step()
        except PlaywrightError as e:
            if is_browser_closed_error(e):
                raise BrowserClosedError() from e
            if is_timeout_error(e):
                logger.info(f"browse timeout {host_of(url)} {self.nav_timeout_ms // 1000}s")
                self.cooldowns.set(url, TIMEOUT_COOLDOWN_MS, "timeout")
                raise BrowseTimeoutError("browse timeout") from e
            logger.info(f"browse step failed: {e}")

    async def _check_captcha(self, page: Any, url: str) -> None:
        if await self.driver.detect_captcha(page):
            logger.warning("captcha detected on source; skipping source")
            self.cooldowns.set(url, CAPTCHA_COOLDOWN_MS, "captcha")
            raise CaptchaError("captcha detected on source")

    async def browse(self, url: str, ignore_cooldown: bool = False) -> BrowseResult:
        """Rendered HTML for an article ('' when the live page is cooling down)."""
        try:
            page = await self.driver.get_page()
            if page.is_closed():
                raise BrowserClosedError()

            html = ""
            if not self._skip_archive(url):
                html = await self._browse_archive(page, url)
            if html:
                return BrowseResult(html=html, source="archive")

            logger.info("browsing source...")
            cooldown = self.cooldowns.get(url)
            if cooldown and not ignore_cooldown:
                logger.info(f"domain cooldown active {cooldown.host} {int(cooldown.remaining_ms / 1000) + 1}s")
                return BrowseResult()

            await self._wait(url, lambda: page.goto(url, wait_until="load", timeout=self.nav_timeout_ms))
            await self._check_captcha(page, url)
            await self._wait(url, lambda: page.wait_for_load_state("networkidle", timeout=self.nav_timeout_ms))
            await self._check_captcha(page, url)

            html = await page.evaluate("() => document.body.innerHTML") or ""
            meta = PageMeta()
            try:
                meta = await self.driver.get_meta(page)
            except PlaywrightError as e:
                logger.debug(f"page meta failed: {e}")
            return BrowseResult(html=html, meta=meta, source="live")
        except BrowseError:
            raise
        except Exception as e:
            raise to_browse_error(e) from e
