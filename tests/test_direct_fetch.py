import unittest
from unittest import mock

import requests

from grinder.fetching.direct_fetch import JINA_READER, DirectFetcher, validate_fetch_url

ARTICLE = "<html><body><article>ARTICLE body</article></body></html>"


class FakeResponse:
    def __init__(self, status_code=200, body="", url="", encoding="utf-8"):
        self.status_code = status_code
        self.url = url
        self.encoding = encoding
        self._body = body.encode("utf-8")
        self.closed = False

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self._body), chunk_size):
            yield self._body[i:i + chunk_size]

    def close(self):
        self.closed = True


def _extractor(html, min_length=400):
    return "ARTICLE" if html and "ARTICLE" in html else None


def _fetcher(*responses, **kwargs) -> DirectFetcher:
    session = mock.MagicMock()
    session.get.side_effect = list(responses)
    return DirectFetcher(session=session, extractor=_extractor, **kwargs)


class TestValidateFetchUrl(unittest.TestCase):
    def test_rejects_unsafe_targets(self):
        self.assertEqual(validate_fetch_url("file:///etc/passwd"), "bad_scheme")
        self.assertEqual(validate_fetch_url("http://localhost:1234/"), "blocked_host")
        self.assertEqual(validate_fetch_url("http://127.0.0.1:1234/"), "blocked_private_ip")
        self.assertEqual(validate_fetch_url("http://10.1.2.3/a"), "blocked_private_ip")
        self.assertEqual(validate_fetch_url("https:///nohost"), "missing_host")
        self.assertIsNone(validate_fetch_url("https://www.reuters.com/world/a"))


class TestDirectFetcher(unittest.TestCase):
    URL = "https://example.com/world/story"

    def test_plain_fetch(self):
        fetcher = _fetcher(FakeResponse(200, ARTICLE, url=self.URL))
        outcome = fetcher.fetch_sync(self.URL)
        self.assertEqual(outcome.method, "fetch")
        self.assertEqual(outcome.status, 200)
        self.assertEqual(outcome.html, ARTICLE)
        self.assertEqual(fetcher.last_status(self.URL), 200)
        self.assertEqual(fetcher.session.get.call_count, 1)

    def test_private_address_is_never_requested(self):
        fetcher = _fetcher()
        outcome = fetcher.fetch_sync("http://127.0.0.1/admin")
        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.status, "invalid_url")
        fetcher.session.get.assert_not_called()

    def test_rate_limited_origin_skips_the_proxy(self):
        fetcher = _fetcher(FakeResponse(429, "", url=self.URL))
        outcome = fetcher.fetch_sync(self.URL)
        self.assertEqual(outcome.status, 429)
        self.assertEqual(outcome.method, "error")
        self.assertEqual(fetcher.last_status(self.URL), 429)
        self.assertEqual(fetcher.session.get.call_count, 1)

    def test_reader_proxy_when_page_has_no_text(self):
        fetcher = _fetcher(
            FakeResponse(200, "<html><body>menu</body></html>", url=self.URL),
            FakeResponse(200, ARTICLE, url=f"{JINA_READER}{self.URL}"),
        )
        outcome = fetcher.fetch_sync(self.URL)
        self.assertEqual(outcome.method, "jina")
        self.assertEqual(outcome.html, ARTICLE)
        proxied_call = fetcher.session.get.call_args_list[1]
        self.assertEqual(proxied_call.args[0], f"{JINA_READER}{self.URL}")
        self.assertEqual(proxied_call.kwargs["headers"], {"X-Return-Format": "html"})

    def test_proxy_failure_keeps_the_plain_outcome(self):
        fetcher = _fetcher(
            FakeResponse(404, "", url=self.URL),
            FakeResponse(500, "", url=self.URL),
        )
        outcome = fetcher.fetch_sync(self.URL)
        self.assertEqual(outcome.status, 404)

    def test_timeout_then_proxy(self):
        fetcher = _fetcher(requests.exceptions.Timeout("slow"), FakeResponse(200, ARTICLE))
        outcome = fetcher.fetch_sync(self.URL)
        self.assertEqual(outcome.method, "jina")

    def test_captcha_page(self):
        fetcher = _fetcher(FakeResponse(200, "<title>Just a moment...</title>", url=self.URL))
        outcome = fetcher.fetch_sync(self.URL)
        self.assertEqual(outcome.method, "captcha")
        self.assertEqual(outcome.status, "captcha")
        self.assertEqual(fetcher.session.get.call_count, 1)

    def test_oversized_body(self):
        fetcher = _fetcher(FakeResponse(200, ARTICLE * 10, url=self.URL), FakeResponse(404), max_bytes=64)
        outcome = fetcher.fetch_sync(self.URL)
        self.assertEqual(outcome.status, "too_large")


class TestDirectFetcherAsync(unittest.IsolatedAsyncioTestCase):
    async def test_fetch_runs_in_thread(self):
        fetcher = _fetcher(FakeResponse(200, ARTICLE, url="https://example.com/a"))
        outcome = await fetcher.fetch("https://example.com/a")
        self.assertTrue(outcome.ok)


if __name__ == "__main__":
    unittest.main()
