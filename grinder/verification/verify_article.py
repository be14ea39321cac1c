"""LLM same-event check between an event's original context and retrieved text."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from grinder.errors import VerificationError

logger = logging.getLogger(__name__)

VERIFY_SCHEMA = {
    "type": "json_schema",
    "name": "verify_result",
    "strict": True,
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "match": {"type": "boolean"},
            "confidence": {"type": "number"},
            "reason": {"type": "string"},
            "page_summary": {"type": "string"},
        },
        "required": ["match", "confidence", "reason", "page_summary"],
    },
}

SYSTEM_PROMPT = " ".join(
    [
        "You verify whether the candidate article is about the same news event as the original article.",
        "Be strict: only mark match=true if it is clearly the same event.",
        "The candidate may contain MORE information, but must NOT contradict the original.",
        "If the candidate omits key facts from the original or is about a related but different event, set match=false.",
        "Use web_search to confirm details when needed.",
        "Dates and sources may differ slightly, but the event must be the same.",
        "Return ONLY JSON with keys:",
        "- match (boolean)",
        "- confidence (number 0-1)",
        "- reason (string, <=200 chars)",
        "- page_summary (string, <=200 chars)",
    ]
)

LENGTH_ERROR_MARKERS = ("context", "token", "too long", "maximum", "input size", "max_tokens")


@dataclass
class VerifyContext:
    """What the event looked like before any retrieval (ground truth)."""

    title: str = ""
    description: str = ""
    keywords: str = ""
    date: str = ""
    source: str = ""
    url: str = ""
    gn_url: str = ""
    text_snippet: str = ""


@dataclass
class VerifyResult:
    ok: bool
    status: str
    match: bool = False
    confidence: float = 0.0
    reason: str = ""
    page_summary: str = ""
    verified: bool = False
    model: str = ""
    use_search: bool = False
    tokens: Optional[int] = None
    fallback_used: bool = False
    error: Optional[str] = None
    timings: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def skipped(cls) -> "VerifyResult":
        return cls(ok=True, status="skipped")


def is_length_error(error: BaseException) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in LENGTH_ERROR_MARKERS)


def clamp(text: Optional[str], limit: int) -> str:
    if not text:
        return ""
    if limit <= 0:
        return text
    return text[:limit]


def clean_json_text(text: Optional[str]) -> str:
    """Strip code fences / chatter around a JSON object."""
    if not text:
        return ""
    trimmed = text.strip()
    if trimmed.startswith("```"):
        trimmed = re.sub(r"^```(?:json)?", "", trimmed, flags=re.IGNORECASE)
        trimmed = re.sub(r"```$", "", trimmed).strip()
    if trimmed.startswith("{") and trimmed.endswith("}"):
        return trimmed
    match = re.search(r"\{[\s\S]*\}", trimmed)
    return match.group(0) if match else trimmed


def build_payload(original: VerifyContext, url: str, text: str, max_chars: int, context_max_chars: int) -> Dict[str, Any]:
    return {
        "original": {
            "title": original.title,
            "description": original.description,
            "keywords": original.keywords,
            "date": original.date,
            "source": original.source,
            "url": original.url,
            "gnUrl": original.gn_url,
            "textSnippet": clamp(original.text_snippet, context_max_chars),
        },
        "candidate": {
            "url": url or "",
            "text": clamp(text, max_chars),
        },
    }


def build_user_prompt(payload: Dict[str, Any]) -> str:
    return "\n".join(
        [
            "Original context:",
            json.dumps(payload["original"], indent=2, ensure_ascii=False),
            "Candidate:",
            json.dumps(payload["candidate"], indent=2, ensure_ascii=False),
        ]
    )


class ArticleVerifier:
    """Responses-API client for the same-event judgement"""

    def __init__(
        self,
        client: Any = None,
        model: str = "gpt-4.1-mini",
        temperature: Optional[float] = 0.0,
        use_search: bool = False,
        reasoning_effort: str = "",
        max_chars: int = 12_000,
        context_max_chars: int = 4_000,
        fallback_max_chars: int = 4_000,
        fallback_context_max_chars: int = 1_500,
        summary_max_chars: int = 400,
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.use_search = use_search
        self.reasoning_effort = reasoning_effort
        self.max_chars = max_chars
        self.context_max_chars = context_max_chars
        self.fallback_max_chars = fallback_max_chars
        self.fallback_context_max_chars = fallback_context_max_chars
        self.summary_max_chars = summary_max_chars

    @classmethod
    def from_settings(cls, settings, client: Any = None) -> "ArticleVerifier":
        if client is None and settings.openai_api_key:
            client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url or None)
        return cls(
            client=client,
            model=settings.verify_model,
            temperature=settings.verify_temperature,
            use_search=settings.verify_use_search,
            reasoning_effort=settings.verify_reasoning_effort,
            max_chars=settings.verify_max_chars,
            context_max_chars=settings.verify_context_max_chars,
            fallback_max_chars=settings.verify_fallback_max_chars,
            fallback_context_max_chars=settings.verify_fallback_context_max_chars,
            summary_max_chars=settings.verify_summary_max_chars,
        )

    def _supports_temperature(self) -> bool:
        model = (self.model or "").lower()
        if model.startswith("gpt-5.1") and self.reasoning_effort == "none":
            return True
        return not model.startswith("gpt-5")

    async def _call(self, user_prompt: str) -> Any:
        if self.client is None:
            raise VerificationError("OPENAI_API_KEY is not set")
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "input": [
                {"role": "system", "content": [{"type": "input_text", "text": SYSTEM_PROMPT}]},
                {"role": "user", "content": [{"type": "input_text", "text": user_prompt}]},
            ],
            "text": {"format": VERIFY_SCHEMA},
        }
        if self.reasoning_effort:
            kwargs["reasoning"] = {"effort": self.reasoning_effort}
        if self._supports_temperature() and self.temperature is not None:
            kwargs["temperature"] = self.temperature
        if self.use_search:
            kwargs["tools"] = [{"type": "web_search"}]
        return await self.client.responses.create(**kwargs)

    @staticmethod
    def _response_text(response: Any) -> str:
        text = getattr(response, "output_text", None)
        if isinstance(text, str) and text:
            return text
        for item in getattr(response, "output", None) or []:
            if getattr(item, "type", "") != "message":
                continue
            parts = [getattr(part, "text", "") or "" for part in getattr(item, "content", None) or []]
            joined = "".join(parts)
            if joined:
                return joined
        return ""

    async def verify(
        self,
        original: VerifyContext,
        url: str,
        text: str,
        min_confidence: float,
        fail_open: bool,
    ) -> VerifyResult:
        """Same-event judgement; never raises, failures map to unverified/error."""
        fallback_used = False
        try:
            payload = build_payload(original, url, text, self.max_chars, self.context_max_chars)
            try:
                response = await self._call(build_user_prompt(payload))
            except Exception as e:
                if not is_length_error(e):
                    raise
                logger.info(f"verify payload too large, retrying with smaller budgets: {e}")
                fallback_used = True
                payload = build_payload(
                    original, url, text, self.fallback_max_chars, self.fallback_context_max_chars
                )
                response = await self._call(build_user_prompt(payload))

            raw = clean_json_text(self._response_text(response))
            try:
                parsed = json.loads(raw)
            except ValueError as e:
                raise VerificationError(f"unparseable verify response: {raw[:200]!r}") from e
            if not isinstance(parsed, dict):
                raise VerificationError("verify response is not an object")

            match = bool(parsed.get("match"))
            confidence = float(parsed.get("confidence") or 0)
            ok = match and confidence >= min_confidence
            usage = getattr(response, "usage", None)
            return VerifyResult(
                ok=ok,
                status="ok" if ok else "mismatch",
                match=match,
                confidence=confidence,
                reason=clamp(str(parsed.get("reason") or ""), self.summary_max_chars),
                page_summary=clamp(
                    str(parsed.get("page_summary") or parsed.get("pageSummary") or ""), self.summary_max_chars
                ),
                verified=True,
                model=self.model,
                use_search=self.use_search,
                tokens=getattr(usage, "total_tokens", None) if usage is not None else None,
                fallback_used=fallback_used,
            )
        except Exception as e:
            logger.warning(f"verify failed: {e}")
            if fail_open:
                return VerifyResult(
                    ok=True,
                    status="unverified",
                    reason="verification unavailable",
                    model=self.model,
                    use_search=self.use_search,
                    fallback_used=fallback_used,
                    error=str(e),
                )
            return VerifyResult(
                ok=False,
                status="error",
                reason="verification failed",
                model=self.model,
                use_search=self.use_search,
                fallback_used=fallback_used,
                error=str(e),
            )
