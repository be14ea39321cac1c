"""Runtime configuration for the summarize pipeline.

Values come from the environment (optionally a .env file loaded by the worker).
Thresholds such as the minimum text length and the verification confidence are
policy knobs, not protocol constants, so every one of them is overridable.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Tuple

logger = logging.getLogger(__name__)

VERIFY_MODES = ("always", "fallback", "short", "never")

DEFAULT_ARCHIVE_SKIP_DOMAINS = (
    "bloomberg.com",
    "reuters.com",
    "wsj.com",
    "ft.com",
)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}; using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}={raw!r}; using {default}")
        return default


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


@dataclass
class Settings:
    """Pipeline settings with validation"""

    # Paths
    cache_dir: str = "articles"
    fetch_log_file: str = ""
    log_file: str = "summarize.log"

    # Content policy
    min_text_length: int = 400
    max_text_length: int = 30_000
    max_html_to_text_chars: int = 4_000_000
    fetch_attempts: int = 2
    browse_on_mismatch: bool = True
    fail_summary_limit: int = 30
    request_timeout: float = 20.0

    # Verification
    verify_mode: str = "always"
    verify_min_confidence: float = 0.7
    verify_short_threshold: int = 1500
    verify_fail_open: bool = True
    verify_model: str = "gpt-4.1-mini"
    verify_temperature: float = 0.0
    verify_use_search: bool = False
    verify_reasoning_effort: str = ""
    verify_max_chars: int = 12_000
    verify_context_max_chars: int = 4_000
    verify_fallback_max_chars: int = 4_000
    verify_fallback_context_max_chars: int = 1_500
    verify_summary_max_chars: int = 400
    verify_delay_ms: int = 1000

    # Alternative sources
    min_agency_level: int = 1
    alternative_date_window_days: float = 3.0

    # Pacing (milliseconds)
    url_decode_delay_ms: int = 30_000
    url_decode_increment_ms: int = 1_000
    url_decode_max_delay_ms: int = 60_000
    url_decode_cooldown_ms: int = 5 * 60_000
    gn_search_delay_ms: int = 1_000

    # External search
    external_search_enabled: bool = False
    external_search_provider: str = "newsapi"
    newsapi_key: str = ""

    # LLM
    openai_api_key: str = ""
    openai_base_url: str = ""
    summarize_model: str = "gpt-4.1-mini"
    summarize_delay_ms: int = 0

    # Browser
    browser_headless: bool = True
    archive_skip_domains: Tuple[str, ...] = DEFAULT_ARCHIVE_SKIP_DOMAINS

    # Row store
    pg_dsn: str = ""
    events_table: str = "events"

    errors: List[str] = field(default_factory=list, repr=False)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load and validate settings from environment variables"""
        settings = cls(
            cache_dir=os.getenv("GRINDER_CACHE_DIR", "articles"),
            fetch_log_file=os.getenv("GRINDER_FETCH_LOG", ""),
            log_file=os.getenv("GRINDER_LOG_FILE", "summarize.log"),

            min_text_length=_env_int("MIN_TEXT_LENGTH", 400),
            max_text_length=_env_int("MAX_TEXT_LENGTH", 30_000),
            max_html_to_text_chars=_env_int("MAX_HTML_TO_TEXT_CHARS", 4_000_000),
            fetch_attempts=_env_int("FETCH_ATTEMPTS", 2),
            browse_on_mismatch=_env_bool("BROWSE_ON_MISMATCH", True),
            fail_summary_limit=_env_int("FAIL_SUMMARY_LIMIT", 30),
            request_timeout=_env_float("REQUEST_TIMEOUT", 20.0),

            verify_mode=os.getenv("VERIFY_MODE", "always").strip().lower(),
            verify_min_confidence=_env_float("VERIFY_MIN_CONFIDENCE", 0.7),
            verify_short_threshold=_env_int("VERIFY_SHORT_THRESHOLD", 1500),
            verify_fail_open=_env_bool("VERIFY_FAIL_OPEN", True),
            verify_model=os.getenv("VERIFY_MODEL", "gpt-4.1-mini"),
            verify_temperature=_env_float("VERIFY_TEMPERATURE", 0.0),
            verify_use_search=_env_bool("VERIFY_USE_SEARCH", False),
            verify_reasoning_effort=os.getenv("VERIFY_REASONING_EFFORT", ""),
            verify_max_chars=_env_int("VERIFY_MAX_CHARS", 12_000),
            verify_context_max_chars=_env_int("VERIFY_CONTEXT_MAX_CHARS", 4_000),
            verify_fallback_max_chars=_env_int("VERIFY_FALLBACK_MAX_CHARS", 4_000),
            verify_fallback_context_max_chars=_env_int("VERIFY_FALLBACK_CONTEXT_MAX_CHARS", 1_500),
            verify_summary_max_chars=_env_int("VERIFY_SUMMARY_MAX_CHARS", 400),
            verify_delay_ms=_env_int("VERIFY_DELAY_MS", 1000),

            min_agency_level=_env_int("MIN_AGENCY_LEVEL", 1),
            alternative_date_window_days=_env_float("ALTERNATIVE_DATE_WINDOW_DAYS", 3.0),

            url_decode_delay_ms=_env_int("URL_DECODE_DELAY_MS", 30_000),
            url_decode_increment_ms=_env_int("URL_DECODE_INCREMENT_MS", 1_000),
            url_decode_max_delay_ms=_env_int("URL_DECODE_MAX_DELAY_MS", 60_000),
            url_decode_cooldown_ms=_env_int("URL_DECODE_COOLDOWN_MS", 5 * 60_000),
            gn_search_delay_ms=_env_int("GN_SEARCH_DELAY_MS", 1_000),

            external_search_enabled=_env_bool("EXTERNAL_SEARCH_ENABLED", False),
            external_search_provider=os.getenv("EXTERNAL_SEARCH_PROVIDER", "newsapi"),
            newsapi_key=os.getenv("NEWSAPI_KEY", ""),

            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_base_url=os.getenv("OPENAI_BASE_URL", ""),
            summarize_model=os.getenv("SUMMARIZE_MODEL", "gpt-4.1-mini"),
            summarize_delay_ms=_env_int("SUMMARIZE_DELAY_MS", 0),

            browser_headless=_env_bool("BROWSER_HEADLESS", True),
            archive_skip_domains=_env_list("ARCHIVE_SKIP_DOMAINS", DEFAULT_ARCHIVE_SKIP_DOMAINS),

            pg_dsn=os.getenv("PG_DSN", ""),
            events_table=os.getenv("GRINDER_EVENTS_TABLE", "events"),
        )
        settings._validate()
        return settings

    def _validate(self) -> None:
        """Validate settings; problems are logged and kept in ``errors``"""
        errors = []
        if self.verify_mode not in VERIFY_MODES:
            errors.append(f"VERIFY_MODE must be one of {', '.join(VERIFY_MODES)} (got {self.verify_mode!r})")
            self.verify_mode = "always"
        if not 0.0 <= self.verify_min_confidence <= 1.0:
            errors.append("VERIFY_MIN_CONFIDENCE must be between 0 and 1")
            self.verify_min_confidence = min(1.0, max(0.0, self.verify_min_confidence))
        if self.fetch_attempts < 1:
            errors.append("FETCH_ATTEMPTS must be at least 1")
            self.fetch_attempts = 1
        if self.min_text_length < 0:
            errors.append("MIN_TEXT_LENGTH must not be negative")
            self.min_text_length = 0
        if self.verify_mode != "never" and not self.openai_api_key:
            errors.append("OPENAI_API_KEY is not set; verification will fail (fail-open decides the outcome)")
        if self.external_search_enabled and not self.newsapi_key:
            errors.append("EXTERNAL_SEARCH_ENABLED is set but NEWSAPI_KEY is missing")

        self.errors = errors
        for error in errors:
            logger.warning(f"Config: {error}")
        if not errors:
            logger.info(f"Configuration validated (verify_mode={self.verify_mode}, cache_dir={self.cache_dir})")
