"""Forward-only migration runner for the journal database schema."""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS journals (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL UNIQUE,
    description     TEXT NOT NULL DEFAULT '',
    rag_enabled     INTEGER NOT NULL DEFAULT 1,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS entries (
    id              TEXT PRIMARY KEY,
    journal_id      TEXT NOT NULL REFERENCES journals(id) ON DELETE CASCADE,
    status          TEXT NOT NULL CHECK (status IN ('draft', 'finalized')),
    summary         TEXT,
    created_at      TEXT NOT NULL,
    finalized_at    TEXT,
    CHECK (status = 'draft' OR summary IS NOT NULL),
    CHECK (status = 'finalized' OR (summary IS NULL AND finalized_at IS NULL))
);

CREATE INDEX IF NOT EXISTS idx_entries_journal ON entries (journal_id, created_at);

CREATE TABLE IF NOT EXISTS messages (
    entry_id        TEXT NOT NULL REFERENCES entries(id) ON DELETE CASCADE,
    seq             INTEGER NOT NULL,
    role            TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system_error')),
    content         TEXT NOT NULL,
    metadata        TEXT NOT NULL DEFAULT '{}',
    created_at      TEXT NOT NULL,
    PRIMARY KEY (entry_id, seq)
);

-- Vectors are keyed by entry id only; deleting an entry or journal removes
-- them explicitly (see EntryStore).
CREATE TABLE IF NOT EXISTS entry_vectors (
    entry_id        TEXT PRIMARY KEY,
    journal_id      TEXT NOT NULL,
    dimensions      INTEGER NOT NULL,
    embedding       BLOB NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_entry_vectors_journal ON entry_vectors (journal_id);
"""

# Append-only. Each entry: (version: int, sql: str).
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(f"BEGIN;\n{sql}\nINSERT INTO schema_version (version) VALUES ({version});\nCOMMIT;")
