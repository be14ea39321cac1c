"""Postgres schema management for the events row store.

Schema creation is idempotent (CREATE/ALTER ... IF NOT EXISTS). Row-store columns
keep their camelCase names, so every identifier is quoted.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

import psycopg
from psycopg import sql

from grinder.events.event_types import COLUMNS


def events_schema_statements(table: str = "events") -> List[sql.Composed]:
    columns = [c for c in COLUMNS.values() if c != "id"]
    column_defs = sql.SQL(",\n  ").join(
        sql.SQL("{} TEXT").format(sql.Identifier(c)) for c in columns
    )
    return [
        sql.SQL(
            """
            CREATE TABLE IF NOT EXISTS {table} (
              seq BIGSERIAL,
              id TEXT PRIMARY KEY,
              {columns},
              articles JSONB,
              created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
              updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
            );
            """
        ).format(table=sql.Identifier(table), columns=column_defs),
        sql.SQL("CREATE INDEX IF NOT EXISTS {index} ON {table} (seq);").format(
            index=sql.Identifier(f"idx_{table}_seq"), table=sql.Identifier(table)
        ),
    ]


def add_column_statement(table: str, column: str) -> sql.Composed:
    return sql.SQL("ALTER TABLE {} ADD COLUMN IF NOT EXISTS {} TEXT;").format(
        sql.Identifier(table), sql.Identifier(column)
    )


def ensure_events_schema(pg_dsn: str, *, table: str = "events", statements: Optional[Iterable] = None) -> None:
    """Ensure the events table exists."""
    stmts = list(statements) if statements is not None else events_schema_statements(table)
    with psycopg.connect(pg_dsn, autocommit=True) as conn:
        with conn.cursor() as cur:
            for s in stmts:
                cur.execute(s)
