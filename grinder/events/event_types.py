"""Event and candidate records used by the summarize pipeline.

An Event mirrors one row of the row store. Working copies are cloned per pass and
merged back with ``commit_into`` only once the pass is finished, so partial
mutations made while exploring fallbacks never reach the persisted row early.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional


def is_blank(value: Any) -> bool:
    """Empty string, whitespace, None and a missing key are all 'absent'."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


# attribute name -> row store column
COLUMNS: Dict[str, str] = {
    "id": "id",
    "title_en": "titleEn",
    "title_ru": "titleRu",
    "url": "url",
    "gn_url": "gnUrl",
    "alternative_url": "alternativeUrl",
    "source": "source",
    "date": "date",
    "description": "description",
    "keywords": "keywords",
    "text": "text",
    "summary": "summary",
    "topic": "topic",
    "priority": "priority",
    "ai_topic": "aiTopic",
    "ai_priority": "aiPriority",
    "content_method": "contentMethod",
    "verify_status": "verifyStatus",
    "meta_title": "metaTitle",
    "meta_description": "metaDescription",
    "meta_keywords": "metaKeywords",
    "meta_date": "metaDate",
    "meta_canonical_url": "metaCanonicalUrl",
    "meta_image": "metaImage",
    "meta_author": "metaAuthor",
    "meta_site_name": "metaSiteName",
    "meta_section": "metaSection",
    "meta_tags": "metaTags",
    "meta_lang": "metaLang",
}

# columns the summarize pass makes sure exist before it writes anything
ENSURED_COLUMNS: List[str] = [
    "titleEn",
    "titleRu",
    "gnUrl",
    "alternativeUrl",
    "url",
    "source",
    "contentMethod",
    "metaTitle",
    "metaDescription",
    "metaKeywords",
    "metaDate",
    "metaCanonicalUrl",
    "metaImage",
    "metaAuthor",
    "metaSiteName",
    "metaSection",
    "metaTags",
    "metaLang",
    "verifyStatus",
]

REQUIRED_FIELDS = ("title_en", "source", "text", "summary")


@dataclass
class OriginalContext:
    """First-observed identity of an event; each field is written at most once."""

    url: str = ""
    gn_url: str = ""
    title_en: str = ""
    title_ru: str = ""
    source: str = ""
    date: str = ""

    def capture(self, base: "Event") -> None:
        for name in ("url", "gn_url", "title_en", "title_ru", "source", "date"):
            if is_blank(getattr(self, name)) and not is_blank(getattr(base, name)):
                setattr(self, name, str(getattr(base, name)).strip())

    def capture_url(self, url: str) -> None:
        if is_blank(self.url) and not is_blank(url):
            self.url = url.strip()

    @property
    def title(self) -> str:
        return self.title_en or self.title_ru


@dataclass
class Candidate:
    """Alternative source article discovered for an event (never persisted)."""

    source: str = ""
    url: str = ""
    gn_url: str = ""
    title_en: str = ""
    title_ru: str = ""
    date: str = ""
    origin: str = ""
    rank: Optional[float] = None

    # filled in by the resolver
    level: int = 0
    normalized_source: str = ""
    normalized_title: str = ""
    reason: str = ""

    @property
    def link(self) -> str:
        return self.url or self.gn_url

    @property
    def has_direct_url(self) -> bool:
        return not is_blank(self.url)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candidate":
        rank = data.get("rank", data.get("position"))
        try:
            rank = float(rank) if rank is not None and str(rank).strip() != "" else None
        except (TypeError, ValueError):
            rank = None
        return cls(
            source=str(data.get("source") or "").strip(),
            url=str(data.get("url") or "").strip(),
            gn_url=str(data.get("gnUrl") or data.get("gn_url") or "").strip(),
            title_en=str(data.get("titleEn") or data.get("title_en") or data.get("title") or "").strip(),
            title_ru=str(data.get("titleRu") or data.get("title_ru") or "").strip(),
            date=str(data.get("date") or "").strip(),
            origin=str(data.get("origin") or data.get("provider") or data.get("from") or "").strip(),
            rank=rank,
        )

    def copy(self, **changes: Any) -> "Candidate":
        return replace(self, **changes)


@dataclass
class ContentSelection:
    """Which URL/method produced the accepted text."""

    url: str = ""
    source: str = ""
    method: str = ""
    is_fallback: bool = False


@dataclass
class Event:
    """One news row under processing."""

    id: str = ""
    title_en: str = ""
    title_ru: str = ""
    url: str = ""
    gn_url: str = ""
    alternative_url: str = ""
    source: str = ""
    date: str = ""
    description: str = ""
    keywords: str = ""
    text: str = ""
    summary: str = ""
    topic: str = ""
    priority: str = ""
    ai_topic: str = ""
    ai_priority: str = ""
    content_method: str = ""
    verify_status: str = ""
    meta_title: str = ""
    meta_description: str = ""
    meta_keywords: str = ""
    meta_date: str = ""
    meta_canonical_url: str = ""
    meta_image: str = ""
    meta_author: str = ""
    meta_site_name: str = ""
    meta_section: str = ""
    meta_tags: str = ""
    meta_lang: str = ""

    # columns this code does not know about, passed through untouched
    extra: Dict[str, Any] = field(default_factory=dict)

    # run-time state, never written to the row store
    original: OriginalContext = field(default_factory=OriginalContext)
    candidates: List[Candidate] = field(default_factory=list)
    verify_state: str = ""
    content: Optional[ContentSelection] = None
    content_meta: Dict[str, str] = field(default_factory=dict)
    verify_context: Optional[Any] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Event":
        known = set(COLUMNS.values())
        values = {}
        for attr, column in COLUMNS.items():
            raw = row.get(column)
            values[attr] = "" if raw is None else str(raw)
        extra = {k: v for k, v in row.items() if k not in known}
        return cls(extra=extra, **values)

    def to_row(self) -> Dict[str, Any]:
        row = dict(self.extra)
        for attr, column in COLUMNS.items():
            row[column] = getattr(self, attr)
        return row

    def clone(self) -> "Event":
        """Working copy for one processing pass."""
        return copy.deepcopy(self)

    def commit_into(self, target: "Event") -> None:
        """Merge persisted columns of this working copy into ``target``."""
        for attr in COLUMNS:
            setattr(target, attr, getattr(self, attr))
        target.extra.update(self.extra)

    def capture_original(self, base: Optional["Event"] = None) -> None:
        self.original.capture(base or self)

    def missing_fields(self) -> List[str]:
        missing = [COLUMNS[name] for name in REQUIRED_FIELDS if is_blank(getattr(self, name))]
        if is_blank(self.url) and is_blank(self.gn_url):
            missing.append("url")
        return missing

    def reset_text_fields(self) -> None:
        self.text = ""
        self.summary = ""
        self.title_ru = ""
        self.topic = ""
        self.priority = ""
        self.ai_topic = ""
        self.ai_priority = ""

    @property
    def title(self) -> str:
        return self.title_en or self.title_ru or self.original.title or ""

    @property
    def needs_text_fields(self) -> bool:
        return any(is_blank(getattr(self, name)) for name in ("summary", "title_ru", "topic", "priority"))
