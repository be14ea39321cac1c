"""Article summarization: summary, translated headline, topic and priority."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from grinder.events.event_types import Event
from grinder.verification.verify_article import clamp, clean_json_text

logger = logging.getLogger(__name__)

TOPICS = (
    "politics",
    "economy",
    "markets",
    "technology",
    "science",
    "conflict",
    "society",
    "culture",
    "sports",
    "other",
)

SYSTEM_PROMPT = """You are a news editor. Read the article and answer with ONLY a JSON object:
{"summary": "...", "titleTranslated": "...", "topic": "...", "priority": 1-5}
- summary: 2-4 sentences in Russian, factual, no opinions
- titleTranslated: the headline translated to Russian
- topic: one of: """ + ", ".join(TOPICS) + """
- priority: 1 (minor) to 5 (major world news)"""


@dataclass
class SummaryResult:
    summary: str = ""
    title_translated: str = ""
    topic: str = ""
    priority: str = ""
    delay: float = 0.0
    model: str = ""


def normalize_topic(value: Any) -> str:
    topic = str(value or "").strip().lower()
    return topic if topic in TOPICS else "other"


def normalize_priority(value: Any) -> str:
    try:
        priority = int(float(value))
    except (TypeError, ValueError):
        return ""
    return str(min(5, max(1, priority)))


def build_prompt(event: Event, max_chars: int) -> str:
    meta = {k: v for k, v in (event.content_meta or {}).items() if k in ("title", "description", "date", "site_name")}
    return "\n".join(
        [
            f"Headline: {event.title_en or event.title_ru}",
            f"Source: {event.source}",
            f"URL: {event.url}",
            f"Page metadata: {json.dumps(meta, ensure_ascii=False)}" if meta else "",
            "",
            "Article:",
            clamp(event.text, max_chars),
        ]
    ).strip()


class Summarizer:
    """OpenAI chat-completion summarizer returning SummaryResult (None on failure)"""

    def __init__(
        self,
        client: Any = None,
        model: str = "gpt-4.1-mini",
        delay_ms: float = 0.0,
        max_chars: int = 12_000,
        temperature: float = 0.3,
    ):
        self.client = client
        self.model = model
        self.delay_ms = delay_ms
        self.max_chars = max_chars
        self.temperature = temperature

    @classmethod
    def from_settings(cls, settings, client: Any = None) -> "Summarizer":
        if client is None and settings.openai_api_key:
            client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url or None)
        return cls(
            client=client,
            model=settings.summarize_model,
            delay_ms=settings.summarize_delay_ms,
            max_chars=settings.verify_max_chars,
        )

    async def summarize(self, event: Event) -> Optional[SummaryResult]:
        if self.client is None:
            logger.error("OpenAI API key missing; cannot summarize")
            return None
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(event, self.max_chars)},
                ],
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content or ""
            data: Dict[str, Any] = json.loads(clean_json_text(content))
        except Exception as e:
            logger.error(f"OpenAI API error: {e}")
            return None
        if not isinstance(data, dict):
            logger.error("Summarizer returned a non-object response")
            return None
        summary = str(data.get("summary") or "").strip()
        if not summary:
            return None
        return SummaryResult(
            summary=summary,
            title_translated=str(data.get("titleTranslated") or data.get("titleRu") or "").strip(),
            topic=normalize_topic(data.get("topic")),
            priority=normalize_priority(data.get("priority")),
            delay=self.delay_ms,
            model=self.model,
        )
