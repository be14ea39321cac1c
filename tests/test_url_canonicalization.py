import unittest

from grinder.ingestion.url_utils import (
    canonicalize_url,
    host_slug,
    is_aggregator_url,
    search_terms_from_url,
    url_hash,
)


class TestUrlCanonicalization(unittest.TestCase):
    def test_canonicalize_strips_tracking_params(self):
        raw = "https://Example.com/path/to/article?utm_source=x&utm_medium=y&id=123&gclid=AAA#section"
        canon = canonicalize_url(raw)
        self.assertEqual(canon, "https://example.com/path/to/article?id=123")

    def test_hash_is_stable_for_equivalent_urls(self):
        a = "https://example.com/a?utm_source=x&id=1"
        b = "https://example.com/a?id=1&utm_medium=y"
        self.assertEqual(url_hash(a), url_hash(b))

    def test_hash_ignores_param_order_and_tracking_presence(self):
        a = "https://example.com/a?b=2&a=1&fbclid=zz&gaa_at=1"
        b = "https://example.com/a?a=1&b=2"
        self.assertEqual(url_hash(a), url_hash(b))

    def test_scheme_less_url_gets_https(self):
        self.assertEqual(canonicalize_url("example.com/story"), "https://example.com/story")

    def test_blank_url_has_no_key(self):
        self.assertEqual(canonicalize_url("   "), "")
        self.assertEqual(url_hash(None), "")

    def test_host_slug_drops_www_and_query(self):
        self.assertEqual(
            host_slug("https://www.reuters.com/world/europe/some-story-2024-01-01/?ref=x"),
            "reuters.com/some-story-2024-01-01",
        )
        self.assertEqual(host_slug("https://example.com/"), "")

    def test_aggregator_detection(self):
        self.assertTrue(is_aggregator_url("https://news.google.com/rss/articles/CBMi"))
        self.assertFalse(is_aggregator_url("https://www.bbc.com/news/world-1"))

    def test_search_terms_from_slug(self):
        self.assertEqual(
            search_terms_from_url("https://apnews.com/article/ceasefire-talks-resume-in-cairo.html"),
            "ceasefire talks resume in cairo",
        )


if __name__ == "__main__":
    unittest.main()
