import unittest

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from grinder.errors import BrowseError, BrowserClosedError, BrowseTimeoutError, CaptchaError
from grinder.extraction.meta_extract import PageMeta
from grinder.fetching.browser import ARCHIVE_MIRROR, ArticleBrowser, is_browser_closed_error
from grinder.fetching.cooldown import DomainCooldowns

URL = "https://www.example.com/world/story?ref=home"


class FakeClock:
    def __init__(self):
        self.now = 1_000.0

    def __call__(self):
        return self.now


class FakePage:
    def __init__(self, archive_html="", live_html="<p>live</p>", archive_text="", goto_error=None):
        self.archive_html = archive_html
        self.live_html = live_html
        self.archive_text = archive_text
        self.goto_error = goto_error
        self.closed = False
        self.url = ""
        self.visited = []

    def is_closed(self):
        return self.closed

    async def goto(self, url, wait_until="load", timeout=None):
        self.url = url
        self.visited.append(url)
        if self.goto_error is not None and not url.startswith(ARCHIVE_MIRROR):
            raise self.goto_error

    async def text_content(self, selector):
        return self.archive_text

    async def query_selector_all(self, selector):
        return []

    async def wait_for_load_state(self, state, timeout=None):
        return None

    async def evaluate(self, script):
        if self.url.startswith(ARCHIVE_MIRROR):
            return self.archive_html
        return self.live_html


class FakeDriver:
    def __init__(self, page, captcha_on=()):
        self.page = page
        self.captcha_on = set(captcha_on)

    async def get_page(self):
        return self.page

    async def detect_captcha(self, page):
        where = "archive" if page.url.startswith(ARCHIVE_MIRROR) else "live"
        return where in self.captcha_on

    async def get_meta(self, page):
        return PageMeta(title="Live title")


class TestArticleBrowser(unittest.IsolatedAsyncioTestCase):
    def _browser(self, page, captcha_on=(), skip=()):
        self.cooldowns = DomainCooldowns(clock=FakeClock())
        return ArticleBrowser(FakeDriver(page, captcha_on), self.cooldowns, archive_skip_domains=skip)

    async def test_archive_copy_is_preferred(self):
        page = FakePage(archive_html="<p>archived</p>")
        result = await self._browser(page).browse(URL)
        self.assertEqual(result.source, "archive")
        self.assertEqual(result.html, "<p>archived</p>")
        self.assertEqual(page.visited, [f"{ARCHIVE_MIRROR}https://www.example.com/world/story"])

    async def test_archive_without_results_falls_through_to_live(self):
        page = FakePage(archive_html="<p>junk</p>", archive_text="No results")
        result = await self._browser(page).browse(URL)
        self.assertEqual(result.source, "live")
        self.assertEqual(result.html, "<p>live</p>")
        self.assertEqual(result.meta.title, "Live title")

    async def test_skipped_archive_domain(self):
        page = FakePage(archive_html="<p>archived</p>")
        result = await self._browser(page, skip=("example.com",)).browse(URL)
        self.assertEqual(result.source, "live")
        self.assertEqual(page.visited, [URL])

    async def test_captcha_on_archive_is_skipped(self):
        page = FakePage(archive_html="<p>archived</p>")
        result = await self._browser(page, captcha_on=("archive",)).browse(URL)
        self.assertEqual(result.source, "live")

    async def test_captcha_on_live_page_cools_the_domain(self):
        browser = self._browser(FakePage(), captcha_on=("live",))
        with self.assertRaises(CaptchaError):
            await browser.browse(URL)
        cooldown = self.cooldowns.get(URL)
        self.assertEqual(cooldown.reason, "captcha")
        self.assertEqual(cooldown.remaining_ms, 10 * 60_000)

    async def test_cooldown_skips_live_page_unless_ignored(self):
        page = FakePage()
        browser = self._browser(page)
        self.cooldowns.set(URL, 60_000, "timeout")
        self.assertEqual((await browser.browse(URL)).html, "")
        self.assertEqual((await browser.browse(URL, ignore_cooldown=True)).html, "<p>live</p>")

    async def test_navigation_timeout(self):
        page = FakePage(goto_error=PlaywrightTimeoutError("Timeout 10000ms exceeded."))
        browser = self._browser(page, skip=("example.com",))
        with self.assertRaises(BrowseTimeoutError):
            await browser.browse(URL)
        self.assertEqual(self.cooldowns.get(URL).reason, "timeout")

    async def test_closed_browser_stops_everything(self):
        page = FakePage(goto_error=PlaywrightError("Target page, context or browser has been closed"))
        with self.assertRaises(BrowserClosedError):
            await self._browser(page, skip=("example.com",)).browse(URL)

        closed = FakePage()
        closed.closed = True
        with self.assertRaises(BrowserClosedError):
            await self._browser(closed).browse(URL)

    async def test_unexpected_error_becomes_browse_error(self):
        class Broken(FakePage):
            async def evaluate(self, script):
                raise RuntimeError("boom")

        with self.assertRaises(BrowseError) as ctx:
            await self._browser(Broken(), skip=("example.com",)).browse(URL)
        self.assertNotIsInstance(ctx.exception, BrowserClosedError)

    def test_closed_error_detection(self):
        self.assertTrue(is_browser_closed_error(Exception("Browser has been closed")))
        self.assertFalse(is_browser_closed_error(Exception("net::ERR_NAME_NOT_RESOLVED")))


if __name__ == "__main__":
    unittest.main()
