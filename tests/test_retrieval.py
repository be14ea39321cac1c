import unittest

from grinder.config import Settings
from grinder.errors import BrowserClosedError, BrowseTimeoutError, CaptchaError
from grinder.events.event_types import Event
from grinder.fetching.browser import BrowseResult
from grinder.fetching.direct_fetch import FetchOutcome
from grinder.fetching.retrieval import Retriever, blocked_label, normalize_fetch_status
from grinder.logs import EventLog
from grinder.verification.verify_article import VerifyResult

URL = "https://www.example.com/world/story"
PAGE = '<html><head><meta property="og:title" content="Page title"></head><body>ARTICLE</body></html>'

OK = VerifyResult(ok=True, status="ok", match=True, confidence=0.9)
MISMATCH = VerifyResult(ok=False, status="mismatch", match=False, confidence=0.9, page_summary="other event")


def _extract(html, min_length, max_chars):
    return "article text " * 50 if "ARTICLE" in html else None


class FakeFetcher:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self._last = ""

    async def fetch(self, url):
        self.calls.append(url)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        self._last = outcome.status
        return outcome

    def last_status(self, url):
        return self._last


class FakeBrowser:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def browse(self, url, ignore_cooldown=False):
        self.calls.append((url, ignore_cooldown))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeGate:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def verify_text(self, event, url, text, is_fallback, method, attempt=0, html=""):
        self.calls.append({"url": url, "method": method, "attempt": attempt, "html": html, "is_fallback": is_fallback})
        return self.results.pop(0)


def _retriever(fetcher, browser, gate, **settings):
    settings.setdefault("fetch_attempts", 2)
    return Retriever(fetcher, browser, gate, Settings(**settings), EventLog(), extractor=_extract)


class TestHelpers(unittest.TestCase):
    def test_normalize_fetch_status(self):
        self.assertEqual(normalize_fetch_status(None), "")
        self.assertEqual(normalize_fetch_status(" 429 "), 429)
        self.assertEqual(normalize_fetch_status("Captcha"), "captcha")

    def test_blocked_label(self):
        self.assertEqual(blocked_label(429), "rate_limited")
        self.assertEqual(blocked_label(503), "rate_limited")
        self.assertEqual(blocked_label(403), "forbidden")
        self.assertEqual(blocked_label("captcha"), "captcha")


class TestRetriever(unittest.IsolatedAsyncioTestCase):
    async def test_direct_fetch_verified(self):
        fetcher = FakeFetcher(FetchOutcome(html=PAGE, method="fetch", status=200, url=URL))
        browser = FakeBrowser(BrowseResult())
        gate = FakeGate(OK)
        event = Event(id="1", url=URL)

        result = await _retriever(fetcher, browser, gate).fetch_text_with_retry(event, URL)

        self.assertTrue(result.ok)
        self.assertEqual(result.method, "fetch")
        self.assertEqual(result.html, PAGE)
        self.assertEqual(browser.calls, [])
        self.assertEqual(gate.calls[0]["html"], PAGE)
        self.assertEqual(event.meta_title, "Page title")
        self.assertEqual(event.content_meta["method"], "fetch")

    async def test_proxy_method_is_reported(self):
        fetcher = FakeFetcher(FetchOutcome(html=PAGE, method="jina", status=200, url=URL))
        gate = FakeGate(OK)
        result = await _retriever(fetcher, FakeBrowser(BrowseResult()), gate).fetch_text_with_retry(Event(id="1"), URL)
        self.assertEqual(result.method, "jina")
        self.assertEqual(gate.calls[0]["method"], "jina")

    async def test_mismatch_returns_early_without_browser(self):
        fetcher = FakeFetcher(FetchOutcome(html=PAGE, method="fetch", status=200, url=URL))
        browser = FakeBrowser(BrowseResult(html=PAGE))
        retriever = _retriever(fetcher, browser, FakeGate(MISMATCH), browse_on_mismatch=False)

        result = await retriever.fetch_text_with_retry(Event(id="1"), URL)

        self.assertTrue(result.mismatch)
        self.assertEqual(result.verify.page_summary, "other event")
        self.assertEqual(browser.calls, [])

    async def test_blocked_origin_then_browser_text(self):
        fetcher = FakeFetcher(FetchOutcome(html="", method="error", status=429, url=URL))
        browser = FakeBrowser(BrowseResult(html=PAGE, source="live"))
        gate = FakeGate(OK)
        event = Event(id="1")

        result = await _retriever(fetcher, browser, gate).fetch_text_with_retry(event, URL)

        self.assertTrue(result.ok)
        self.assertEqual(result.method, "browse")
        self.assertEqual(browser.calls, [(URL, True)])
        self.assertEqual(gate.calls[0]["method"], "browse")

    async def test_mismatch_is_reported_before_blocked(self):
        fetcher = FakeFetcher(FetchOutcome(html="", method="error", status=429, url=URL))
        browser = FakeBrowser(BrowseResult(html=PAGE))
        result = await _retriever(fetcher, browser, FakeGate(MISMATCH)).fetch_text_with_retry(Event(id="1"), URL)
        self.assertTrue(result.mismatch)
        self.assertEqual(result.method, "browse")

    async def test_blocked_without_browser_text(self):
        fetcher = FakeFetcher(FetchOutcome(html="", method="error", status=403, url=URL))
        browser = FakeBrowser(BrowseResult())
        event = Event(id="1")
        event_log = EventLog()
        retriever = Retriever(fetcher, browser, FakeGate(), Settings(fetch_attempts=2), event_log, extractor=_extract)

        result = await retriever.fetch_text_with_retry(event, URL, is_fallback=True)

        self.assertTrue(result.blocked)
        self.assertEqual(result.blocked_status, 403)
        self.assertEqual(result.last_status, "forbidden")
        self.assertEqual(len(fetcher.calls), 1)
        self.assertEqual(browser.calls, [(URL, False)])
        self.assertEqual(event_log.last_outcome(event).status, "no_text")

    async def test_exhausted_after_every_attempt(self):
        fetcher = FakeFetcher(FetchOutcome(html="", method="error", status=404, url=URL))
        browser = FakeBrowser(BrowseResult())
        result = await _retriever(fetcher, browser, FakeGate()).fetch_text_with_retry(Event(id="1"), URL)

        self.assertEqual(result.status, "exhausted")
        self.assertEqual(result.last_status, "no_text")
        self.assertEqual(result.last_method, "fetch")
        self.assertEqual(len(fetcher.calls), 2)
        self.assertEqual(len(browser.calls), 2)

    async def test_browser_failures_are_labelled(self):
        fetcher = FakeFetcher(FetchOutcome(html="", method="error", status=404, url=URL))
        browser = FakeBrowser(CaptchaError("captcha"))
        result = await _retriever(fetcher, browser, FakeGate(), fetch_attempts=1).fetch_text_with_retry(
            Event(id="1"), URL
        )
        self.assertEqual(result.last_status, "captcha")
        self.assertEqual(result.last_method, "playwright")

        browser = FakeBrowser(BrowseTimeoutError("slow"))
        result = await _retriever(fetcher, browser, FakeGate(), fetch_attempts=1).fetch_text_with_retry(
            Event(id="1"), URL
        )
        self.assertEqual(result.last_status, "timeout")

    async def test_closed_browser_propagates(self):
        fetcher = FakeFetcher(FetchOutcome(html="", method="error", status=404, url=URL))
        browser = FakeBrowser(BrowserClosedError())
        with self.assertRaises(BrowserClosedError):
            await _retriever(fetcher, browser, FakeGate()).fetch_text_with_retry(Event(id="1"), URL)


if __name__ == "__main__":
    unittest.main()
