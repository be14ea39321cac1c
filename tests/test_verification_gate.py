import unittest
from unittest import mock

from grinder.config import Settings
from grinder.events.event_types import Event
from grinder.pipeline.pacing import VERIFY, PaceEntry, RateLimitLedger
from grinder.verification.gate import VerificationGate, apply_verify_status
from grinder.verification.verify_article import VerifyResult

GN_URL = "https://news.google.com/rss/articles/CBMiExample"
URL = "https://www.reuters.com/world/ceasefire-talks-resume"
PAGE = '<html><head><meta property="og:title" content="Ceasefire talks resume"></head><body>x</body></html>'


class FakeClock:
    def __init__(self):
        self.now = 1_000.0

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += seconds


class FakeVerifier:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def verify(self, original, url, text, min_confidence, fail_open):
        self.calls.append((original, url, text, min_confidence, fail_open))
        return self.result


class FakeDecoder:
    def __init__(self, url=URL):
        self.url = url
        self.calls = []

    async def decode(self, gn_url):
        self.calls.append(gn_url)
        return self.url


class TestShouldVerify(unittest.TestCase):
    def _gate(self, mode):
        return VerificationGate(None, None, None, Settings(verify_mode=mode, verify_short_threshold=1500), None)

    def test_modes(self):
        self.assertTrue(self._gate("always").should_verify(False, 10_000))
        self.assertTrue(self._gate("fallback").should_verify(True, 10))
        self.assertFalse(self._gate("fallback").should_verify(False, 10))
        self.assertTrue(self._gate("short").should_verify(False, 1499))
        self.assertFalse(self._gate("short").should_verify(True, 1500))
        self.assertFalse(self._gate("never").should_verify(True, 10))


class TestApplyVerifyStatus(unittest.TestCase):
    def test_status_is_copied(self):
        event = Event(id="1")
        apply_verify_status(event, VerifyResult(ok=False, status=""))
        self.assertEqual(event.verify_state, "mismatch")
        apply_verify_status(event, None)
        self.assertEqual(event.verify_state, "mismatch")
        apply_verify_status(event, VerifyResult.skipped())
        self.assertEqual(event.verify_state, "skipped")


class TestVerificationGate(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.ledger = RateLimitLedger({VERIFY: PaceEntry(delay_ms=1_000)}, clock=self.clock, sleep=self.clock.sleep)
        self.event_log = mock.MagicMock()
        self.fetcher = mock.MagicMock()
        self.decoder = FakeDecoder()

    def _gate(self, verifier, **settings):
        return VerificationGate(verifier, self.ledger, self.decoder, Settings(**settings), self.event_log,
                                fetcher=self.fetcher)

    async def test_skip_never_calls_the_model(self):
        verifier = FakeVerifier(VerifyResult(ok=False, status="mismatch"))
        event = Event(id="1", url=URL)
        result = await self._gate(verifier, verify_mode="fallback").verify_text(event, URL, "text", False, "cache")
        self.assertEqual(result.status, "skipped")
        self.assertTrue(result.ok)
        self.assertEqual(event.verify_state, "skipped")
        self.assertEqual(verifier.calls, [])
        self.assertEqual(self.event_log.record.call_args.args[1]["status"], "skipped")

    async def test_verification_with_decoded_original_and_page_hint(self):
        verifier = FakeVerifier(VerifyResult(ok=True, status="ok", match=True, confidence=0.9, model="gpt-4.1-mini",
                                             use_search=True))
        event = Event(id="2", gn_url=GN_URL, title_en="Row title")
        event.capture_original()

        gate = self._gate(verifier, verify_mode="always", verify_min_confidence=0.7, verify_fail_open=False)
        result = await gate.verify_text(event, URL, "body text", False, "fetch", attempt=1, html=PAGE)

        self.assertTrue(result.ok)
        self.assertEqual(self.decoder.calls, [GN_URL])
        self.assertEqual(event.url, URL)
        self.assertEqual(event.original.url, URL)
        self.assertEqual(event.verify_state, "ok")
        self.fetcher.fetch.assert_not_called()

        context, url, text, min_confidence, fail_open = verifier.calls[0]
        self.assertEqual(context.title, "Ceasefire talks resume")
        self.assertEqual((url, text, min_confidence, fail_open), (URL, "body text", 0.7, False))
        self.assertEqual(set(result.timings), {"waitMs", "contextMs", "aiMs"})

        data = self.event_log.record.call_args.args[1]
        self.assertEqual(data["verifyModel"], "gpt-4.1-mini+search")
        self.assertEqual(data["attempt"], 1)

    async def test_calls_are_paced(self):
        verifier = FakeVerifier(VerifyResult(ok=False, status="mismatch", match=False, confidence=0.2))
        event = Event(id="3", url=URL)
        event.capture_original()
        event.verify_context = mock.MagicMock()
        gate = self._gate(verifier, verify_mode="always")

        await gate.verify_text(event, URL, "a", True, "fetch")
        start = self.clock.now
        result = await gate.verify_text(event, URL, "b", True, "browse")

        self.assertAlmostEqual(self.clock.now - start, 1.0)
        self.assertEqual(result.timings["waitMs"], 1_000)
        self.assertEqual(event.verify_state, "mismatch")
        self.assertEqual(len(verifier.calls), 2)


if __name__ == "__main__":
    unittest.main()
