import json
import unittest
from types import SimpleNamespace

from grinder.verification.verify_article import ArticleVerifier, VerifyContext, clean_json_text


class FakeResponses:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _response(payload, tokens=321):
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return SimpleNamespace(output_text=text, usage=SimpleNamespace(total_tokens=tokens))


def _verifier(*results, **kwargs):
    responses = FakeResponses(*results)
    client = SimpleNamespace(responses=responses)
    return ArticleVerifier(client=client, **kwargs), responses


ORIGINAL = VerifyContext(title="Ceasefire talks resume in Cairo", source="Reuters", url="https://reuters.com/a")


class TestCleanJsonText(unittest.TestCase):
    def test_strips_fences_and_chatter(self):
        self.assertEqual(clean_json_text('```json\n{"match": true}\n```'), '{"match": true}')
        self.assertEqual(clean_json_text('Sure! {"match": false} hope it helps'), '{"match": false}')
        self.assertEqual(clean_json_text(None), "")


class TestArticleVerifier(unittest.IsolatedAsyncioTestCase):
    async def test_confident_match(self):
        verifier, responses = _verifier(
            _response({"match": True, "confidence": 0.9, "reason": "same talks", "page_summary": "Talks resume"})
        )
        result = await verifier.verify(ORIGINAL, "https://bbc.com/b", "text", min_confidence=0.6, fail_open=True)
        self.assertTrue(result.ok)
        self.assertEqual(result.status, "ok")
        self.assertTrue(result.verified)
        self.assertEqual(result.tokens, 321)
        self.assertEqual(result.page_summary, "Talks resume")

        call = responses.calls[0]
        self.assertEqual(call["model"], "gpt-4.1-mini")
        self.assertEqual(call["temperature"], 0.0)
        self.assertEqual(call["text"]["format"]["name"], "verify_result")
        self.assertNotIn("tools", call)
        prompt = call["input"][1]["content"][0]["text"]
        self.assertIn("Ceasefire talks resume in Cairo", prompt)
        self.assertIn("https://bbc.com/b", prompt)

    async def test_low_confidence_is_a_mismatch(self):
        verifier, _ = _verifier(_response({"match": True, "confidence": 0.4, "reason": "", "page_summary": ""}))
        result = await verifier.verify(ORIGINAL, "u", "text", min_confidence=0.6, fail_open=True)
        self.assertFalse(result.ok)
        self.assertEqual(result.status, "mismatch")

    async def test_length_error_retries_with_smaller_budget(self):
        verifier, responses = _verifier(
            RuntimeError("This model's maximum context length is 128000 tokens"),
            _response({"match": True, "confidence": 1, "reason": "r", "page_summary": "s"}),
            max_chars=100,
            fallback_max_chars=10,
        )
        result = await verifier.verify(ORIGINAL, "u", "x" * 500, min_confidence=0.6, fail_open=False)
        self.assertTrue(result.ok)
        self.assertTrue(result.fallback_used)
        second_prompt = responses.calls[1]["input"][1]["content"][0]["text"]
        self.assertIn('"text": "xxxxxxxxxx"', second_prompt)

    async def test_failure_is_unverified_when_fail_open(self):
        verifier, _ = _verifier(_response("not json at all"))
        result = await verifier.verify(ORIGINAL, "u", "text", min_confidence=0.6, fail_open=True)
        self.assertTrue(result.ok)
        self.assertEqual(result.status, "unverified")
        self.assertIsNotNone(result.error)

    async def test_failure_is_error_when_fail_closed(self):
        verifier, _ = _verifier(RuntimeError("503 upstream"))
        result = await verifier.verify(ORIGINAL, "u", "text", min_confidence=0.6, fail_open=False)
        self.assertFalse(result.ok)
        self.assertEqual(result.status, "error")
        self.assertFalse(result.fallback_used)

    async def test_missing_client(self):
        result = await ArticleVerifier(client=None).verify(ORIGINAL, "u", "t", min_confidence=0.6, fail_open=True)
        self.assertEqual(result.status, "unverified")

    async def test_search_tool_and_reasoning_model(self):
        verifier, responses = _verifier(
            _response({"match": False, "confidence": 0.9, "reason": "different", "page_summary": ""}),
            model="gpt-5-mini",
            use_search=True,
            reasoning_effort="low",
        )
        result = await verifier.verify(ORIGINAL, "u", "t", min_confidence=0.6, fail_open=True)
        self.assertEqual(result.status, "mismatch")
        call = responses.calls[0]
        self.assertEqual(call["tools"], [{"type": "web_search"}])
        self.assertEqual(call["reasoning"], {"effort": "low"})
        self.assertNotIn("temperature", call)


if __name__ == "__main__":
    unittest.main()
