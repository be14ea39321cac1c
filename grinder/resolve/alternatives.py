"""Alternative-source candidates: filtering, ranking, dedup and pool merging.

A candidate pool is attached to an event by aggregator search (origin ``gn``),
external search (``newsapi``) or read from the row store (``sheet``). Row-store
entries are never used as fallbacks: they are whatever the event already was.
"""

from __future__ import annotations

import email.utils
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from grinder.events.event_types import Candidate, Event, is_blank
from grinder.ingestion.url_utils import is_aggregator_url, normalize_url
from grinder.resolve.source_levels import normalize_source, source_level
from grinder.resolve.titles import normalize_title_key, slug_title_key, title_matches

logger = logging.getLogger(__name__)

SHEET_ORIGIN = "sheet"


def parse_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    s = str(value).strip()
    if not s:
        return None
    try:
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = email.utils.parsedate_to_datetime(s)
        except (TypeError, ValueError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def within_date_window(event_date: Optional[datetime], candidate_date: Optional[datetime], window_days: float) -> bool:
    """Unknown dates never exclude a candidate."""
    if window_days <= 0 or event_date is None or candidate_date is None:
        return True
    diff = abs((candidate_date - event_date).total_seconds()) / 86400
    return diff <= window_days


def event_link(event: Event) -> str:
    return normalize_url(event.url) or normalize_url(event.gn_url)


def target_title_key(event: Event) -> str:
    title = event.title_en or event.title_ru or event.original.title_en or event.original.title_ru
    key = normalize_title_key(title)
    if key:
        return key
    return slug_title_key(event_link(event))


def candidate_title_key(candidate: Candidate) -> str:
    slug_key = slug_title_key(candidate.link)
    title_key = normalize_title_key(candidate.title_en or candidate.title_ru)
    # stored row titles can be stale, the URL slug is what was actually published
    if candidate.origin == SHEET_ORIGIN:
        return slug_key or title_key
    return title_key or slug_key


def rank_key(candidate: Candidate) -> tuple:
    rank = candidate.rank if candidate.rank is not None else float("inf")
    return (-candidate.level, 0 if candidate.has_direct_url else 1, rank)


def rank_candidates(candidates: Iterable[Candidate]) -> List[Candidate]:
    """Level desc, direct URL first, rank asc (missing last); stable otherwise."""
    return sorted(candidates, key=rank_key)


def parse_candidates(value: Any) -> List[Candidate]:
    """Candidate pool from a row-store value (JSON text or list of dicts)."""
    if not value:
        return []
    items = value
    if isinstance(value, str):
        try:
            items = json.loads(value)
        except ValueError:
            return []
    if not isinstance(items, list):
        return []
    return [Candidate.from_dict(item) for item in items if isinstance(item, dict)]


@dataclass
class Classification:
    accepted: List[Candidate] = field(default_factory=list)
    rejected: List[Candidate] = field(default_factory=list)


class AlternativeResolver:
    """Decides which alternative candidates are worth fetching, in what order"""

    def __init__(self, min_level: int = 1, date_window_days: float = 3.0):
        self.min_level = min_level
        self.date_window_days = date_window_days

    @classmethod
    def from_settings(cls, settings) -> "AlternativeResolver":
        return cls(min_level=settings.min_agency_level, date_window_days=settings.alternative_date_window_days)

    def _prepare(self, candidate: Candidate) -> Candidate:
        origin = candidate.origin or ("gn" if candidate.gn_url else "")
        prepared = candidate.copy(
            url=normalize_url(candidate.url),
            gn_url=normalize_url(candidate.gn_url),
            origin=origin,
            level=source_level(candidate.source, candidate.url),
            normalized_source=normalize_source(candidate.source),
            reason="",
        )
        prepared.normalized_title = candidate_title_key(prepared)
        return prepared

    def classify(self, event: Event, candidates: Optional[Iterable[Candidate]] = None) -> Classification:
        """Split candidates into ranked ``accepted`` and ``rejected`` (with reasons)."""
        items = list(event.candidates if candidates is None else candidates)
        current_source = normalize_source(event.source)
        current_link = event_link(event)
        event_date = parse_date(event.original.date or event.date)

        result = Classification()
        seen_sources = {current_source} if current_source else set()
        seen_titles = set()
        seen_links = set()

        for raw in items:
            c = self._prepare(raw)
            link = c.link
            reason = ""
            if not link or is_blank(c.source) or not c.normalized_source:
                reason = "missing_link_or_source"
            elif c.origin == SHEET_ORIGIN:
                reason = "sheet_origin"
            elif not within_date_window(event_date, parse_date(c.date), self.date_window_days):
                reason = "date_out_of_range"
            elif c.normalized_source == current_source and link == current_link:
                reason = "same_source_same_link"
            else:
                title_key = f"{c.normalized_source}|{c.normalized_title or '__no_title__'}"
                link_key = f"{c.normalized_source}|{link}"
                if title_key in seen_titles or link_key in seen_links:
                    reason = "duplicate"
                elif c.level < self.min_level:
                    reason = "below_min_agency"
                elif c.normalized_source in seen_sources and (not current_link or link == current_link):
                    reason = "filtered"
                else:
                    seen_titles.add(title_key)
                    seen_links.add(link_key)
                    seen_sources.add(c.normalized_source)
                    result.accepted.append(c)
                    continue
            c.reason = reason
            result.rejected.append(c)

        result.accepted = rank_candidates(result.accepted)
        return result

    def merge(self, event: Event, items: Iterable[Candidate]) -> int:
        """Add search results whose headline matches the event; returns count added."""
        target = target_title_key(event)
        seen = {
            f"{normalize_source(c.source)}|{c.link}"
            for c in event.candidates
            if c.link and not is_blank(c.source)
        }
        added = 0
        for item in items:
            if not item.link or is_blank(item.source) or item.origin == SHEET_ORIGIN:
                continue
            if target and not title_matches(target, candidate_title_key(item)):
                continue
            key = f"{normalize_source(item.source)}|{item.link}"
            if key in seen:
                continue
            seen.add(key)
            event.candidates.append(item)
            added += 1
        return added


def needs_decode(candidate: Candidate) -> bool:
    """True when the only link is an aggregator redirect."""
    return not candidate.url and bool(candidate.gn_url) and is_aggregator_url(candidate.gn_url)


def should_external_search(accepted: List[Candidate]) -> bool:
    return not accepted or all(not c.has_direct_url for c in accepted)
