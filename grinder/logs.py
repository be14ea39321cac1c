"""Structured per-event logging.

Every pipeline decision is recorded as a small dict (phase, status, free fields).
Entries go to the module logger and, when configured, to a JSONL fetch log so a
run can be audited afterwards. The last phase/status/method/reason seen for each
event feeds the failure summary printed at the end of a run.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_LEVELS = {
    "ok": logging.INFO,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "debug": logging.DEBUG,
}


def configure_logging(log_file: str = "", level: int = logging.INFO) -> None:
    """Configure root logging the same way for every worker entry point"""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)


def truncate_string(value: Any, limit: int = 800) -> Any:
    if not isinstance(value, str) or limit <= 0 or len(value) <= limit:
        return value
    suffix = f"... ({len(value) - limit} more chars)"
    return value[: max(0, limit - len(suffix))] + suffix


def truncate(text: Optional[str], limit: int = 220) -> str:
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


@dataclass
class LastOutcome:
    phase: str = ""
    status: str = ""
    method: str = ""
    reason: str = ""


class EventLog:
    """Records pipeline decisions per event"""

    def __init__(self, fetch_log_file: str = "", max_string_length: int = 800):
        self.fetch_log_file = fetch_log_file
        self.max_string_length = max_string_length
        self.last: Dict[str, LastOutcome] = {}
        if fetch_log_file:
            directory = os.path.dirname(fetch_log_file)
            if directory:
                os.makedirs(directory, exist_ok=True)

    def record(self, event: Any, data: Dict[str, Any], message: str = "", level: str = "info") -> None:
        event_id = str(getattr(event, "id", "") or "")
        entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "id": event_id,
        }
        for key, value in data.items():
            if value is None or value == "":
                continue
            entry[key] = truncate_string(value, self.max_string_length)

        outcome = self.last.setdefault(event_id, LastOutcome())
        if data.get("phase"):
            outcome.phase = str(data["phase"])
        if data.get("status"):
            outcome.status = str(data["status"])
        if data.get("method"):
            outcome.method = str(data["method"])
        if data.get("reason"):
            outcome.reason = str(data["reason"])

        log_level = _LEVELS.get(level, logging.INFO)
        logger.log(log_level, message or f"#{event_id} {data.get('phase', '')} {data.get('status', '')}".strip())
        if self.fetch_log_file:
            self._append(entry)

    def last_outcome(self, event: Any) -> LastOutcome:
        return self.last.get(str(getattr(event, "id", "") or ""), LastOutcome())

    def _append(self, entry: Dict[str, Any]) -> None:
        try:
            with open(self.fetch_log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            logger.warning(f"Fetch log write failed: {e}")
