import os
import unittest
from unittest import mock

from grinder.config import DEFAULT_ARCHIVE_SKIP_DOMAINS, Settings


class TestSettings(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test"}, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.verify_mode, "always")
        self.assertEqual(settings.min_text_length, 400)
        self.assertEqual(settings.archive_skip_domains, DEFAULT_ARCHIVE_SKIP_DOMAINS)
        self.assertEqual(settings.errors, [])

    def test_environment_overrides(self):
        env = {
            "OPENAI_API_KEY": "sk-test",
            "VERIFY_MODE": " Fallback ",
            "VERIFY_MIN_CONFIDENCE": "0.55",
            "BROWSE_ON_MISMATCH": "no",
            "ARCHIVE_SKIP_DOMAINS": "Example.com, news.example.org,",
            "SUMMARIZE_DELAY_MS": "1500",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.verify_mode, "fallback")
        self.assertEqual(settings.verify_min_confidence, 0.55)
        self.assertFalse(settings.browse_on_mismatch)
        self.assertEqual(settings.archive_skip_domains, ("example.com", "news.example.org"))
        self.assertEqual(settings.summarize_delay_ms, 1500)

    def test_invalid_values_are_corrected_and_reported(self):
        env = {
            "VERIFY_MODE": "sometimes",
            "VERIFY_MIN_CONFIDENCE": "1.5",
            "FETCH_ATTEMPTS": "0",
            "MIN_TEXT_LENGTH": "many",
            "EXTERNAL_SEARCH_ENABLED": "true",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.verify_mode, "always")
        self.assertEqual(settings.verify_min_confidence, 1.0)
        self.assertEqual(settings.fetch_attempts, 1)
        self.assertEqual(settings.min_text_length, 400)
        self.assertEqual(len(settings.errors), 5)


if __name__ == "__main__":
    unittest.main()
