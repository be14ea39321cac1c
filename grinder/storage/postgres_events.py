"""Postgres-backed events row store.

Rows are read once at batch start in insertion order and written back one at a
time by id. The ``articles`` JSONB column holds the candidate pool captured at
ingestion; it is read into the event (tagged as row-store origin) and never
written back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from grinder.errors import StoreError
from grinder.events.event_types import COLUMNS, Event
from grinder.resolve.alternatives import SHEET_ORIGIN, parse_candidates
from grinder.storage.postgres_schema import add_column_statement

logger = logging.getLogger(__name__)


@dataclass
class PostgresEventStore:
    pg_dsn: str
    table: str = "events"
    autosave: bool = True
    pending: Dict[int, Event] = field(default_factory=dict)
    columns: List[str] = field(default_factory=list)

    def _connect(self, **kwargs: Any):
        return psycopg.connect(self.pg_dsn, **kwargs)

    def load(self) -> List[Event]:
        """All events in row order."""
        query = sql.SQL("SELECT * FROM {} ORDER BY seq, id").format(sql.Identifier(self.table))
        try:
            with self._connect(row_factory=dict_row) as conn:
                with conn.cursor() as cur:
                    cur.execute(query)
                    rows = cur.fetchall()
                    self.columns = [d.name for d in cur.description or []]
        except psycopg.Error as e:
            raise StoreError(f"Failed to load events from {self.table}: {e}") from e

        events: List[Event] = []
        for row in rows:
            pool = row.pop("articles", None)
            for name in ("seq", "created_at", "updated_at"):
                row.pop(name, None)
            event = Event.from_row(row)
            event.candidates = [
                c if c.origin else c.copy(origin=SHEET_ORIGIN) for c in parse_candidates(pool)
            ]
            events.append(event)
        logger.info(f"Loaded {len(events)} events from {self.table}")
        return events

    def ensure_columns(self, names: Iterable[str]) -> None:
        missing = [n for n in names if n not in self.columns] if self.columns else list(names)
        if not missing:
            return
        try:
            with self._connect(autocommit=True) as conn:
                with conn.cursor() as cur:
                    for name in missing:
                        cur.execute(add_column_statement(self.table, name))
        except psycopg.Error as e:
            raise StoreError(f"Failed to add columns {missing}: {e}") from e
        self.columns.extend(n for n in missing if n not in self.columns)

    def _update(self, event: Event) -> None:
        row = event.to_row()
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(c)) for c in COLUMNS.values() if c != "id"
        )
        query = sql.SQL("UPDATE {} SET {}, updated_at = now() WHERE id = %s").format(
            sql.Identifier(self.table), assignments
        )
        params = [row[c] for c in COLUMNS.values() if c != "id"] + [event.id]
        with self._connect(autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)

    def save_row(self, index: int, event: Event) -> bool:
        """Write one event back; failures are kept for a later flush."""
        try:
            self._update(event)
        except psycopg.Error as e:
            logger.error(f"Failed to save row {index} (#{event.id}): {e}")
            self.pending[index] = event
            return False
        self.pending.pop(index, None)
        return True

    def pause_autosave(self) -> None:
        self.autosave = False

    def resume_autosave(self, flush: bool = False) -> int:
        """Re-enable autosave; with ``flush`` retry rows whose save failed."""
        self.autosave = True
        if not flush:
            return 0
        return self.flush_pending()

    def flush_pending(self) -> int:
        if not self.pending:
            return 0
        saved = 0
        for index, event in sorted(self.pending.items()):
            if self.save_row(index, event):
                saved += 1
        logger.info(f"Flushed {saved} pending rows, {len(self.pending)} still pending")
        return saved

    def close(self) -> int:
        """Flush rows left from failed saves unless autosave is paused."""
        if not self.autosave:
            if self.pending:
                logger.warning(f"Autosave paused; {len(self.pending)} rows not saved")
            return 0
        return self.flush_pending()
