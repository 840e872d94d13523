"""Repository for journals, entries and messages.

Single interface for journal CRUD and entry persistence. Finalized entries
are write-protected here as well as in the conversation layer: saving a
finalized entry with different messages, summary or status raises
EntryImmutable.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

from inkwell.db.connection import transaction
from inkwell.db.models import Entry, EntryStatus, Journal, Message, MessageRole, utc_now
from inkwell.db.vectors import VectorStore
from inkwell.errors import (
    EntryImmutable,
    EntryNotFound,
    InvalidInput,
    JournalNotFound,
    StoreInconsistency,
)

logger = logging.getLogger(__name__)

_ENTRY_COLUMNS = "id, journal_id, status, summary, created_at, finalized_at"
_JOURNAL_COLUMNS = "id, name, description, rag_enabled, created_at, updated_at"


class EntryStore:
    """Data access layer for journals and their entries.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see inkwell.db.schema.initialize).
        """
        self._conn = conn

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Group several writes (including VectorStore writes) into one transaction."""
        with transaction(self._conn):
            yield

    # ------------------------------------------------------------------
    # Journals
    # ------------------------------------------------------------------

    def create_journal(self, journal: Journal) -> Journal:
        """Insert a new journal.

        Raises:
            InvalidInput: If the name is blank or already used by another journal.
        """
        name = journal.name.strip()
        if not name:
            raise InvalidInput("Journal name must not be empty.")
        if self.get_journal_by_name(name) is not None:
            raise InvalidInput(f"A journal named '{name}' already exists.")
        journal.name = name
        with transaction(self._conn):
            self._conn.execute(
                f"INSERT INTO journals ({_JOURNAL_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    journal.id,
                    journal.name,
                    journal.description,
                    int(journal.rag_enabled),
                    journal.created_at,
                    journal.updated_at,
                ),
            )
        logger.info("Created journal %s", journal.id)
        return journal

    def get_journal(self, journal_id: str) -> Journal | None:
        row = self._conn.execute(
            f"SELECT {_JOURNAL_COLUMNS} FROM journals WHERE id = ?", (journal_id,)
        ).fetchone()
        return _row_to_journal(row) if row else None

    def get_journal_by_name(self, name: str) -> Journal | None:
        row = self._conn.execute(
            f"SELECT {_JOURNAL_COLUMNS} FROM journals WHERE name = ?", (name.strip(),)
        ).fetchone()
        return _row_to_journal(row) if row else None

    def require_journal(self, journal_id: str) -> Journal:
        """Return the journal or raise JournalNotFound."""
        journal = self.get_journal(journal_id)
        if journal is None:
            raise JournalNotFound(journal_id)
        return journal

    def list_journals(self) -> list[Journal]:
        """Return all journals ordered by creation time (oldest first)."""
        rows = self._conn.execute(
            f"SELECT {_JOURNAL_COLUMNS} FROM journals ORDER BY created_at, rowid"
        ).fetchall()
        return [_row_to_journal(r) for r in rows]

    def update_journal(
        self,
        journal_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        rag_enabled: bool | None = None,
    ) -> Journal:
        """Update the given fields of a journal and bump updated_at."""
        journal = self.require_journal(journal_id)
        if name is not None:
            name = name.strip()
            if not name:
                raise InvalidInput("Journal name must not be empty.")
            other = self.get_journal_by_name(name)
            if other is not None and other.id != journal_id:
                raise InvalidInput(f"A journal named '{name}' already exists.")
            journal.name = name
        if description is not None:
            journal.description = description
        if rag_enabled is not None:
            journal.rag_enabled = rag_enabled
        journal.updated_at = utc_now()
        with transaction(self._conn):
            self._conn.execute(
                """
                UPDATE journals
                SET name = ?, description = ?, rag_enabled = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    journal.name,
                    journal.description,
                    int(journal.rag_enabled),
                    journal.updated_at,
                    journal_id,
                ),
            )
        return journal

    def set_rag_enabled(self, journal_id: str, enabled: bool) -> Journal:
        return self.update_journal(journal_id, rag_enabled=enabled)

    def is_rag_enabled(self, journal_id: str) -> bool:
        """Return the journal's RAG flag; False for unknown journals."""
        row = self._conn.execute(
            "SELECT rag_enabled FROM journals WHERE id = ?", (journal_id,)
        ).fetchone()
        return bool(row["rag_enabled"]) if row else False

    def delete_journal(self, journal_id: str) -> None:
        """Delete a journal with all its entries, messages and vectors."""
        with transaction(self._conn):
            self._conn.execute("DELETE FROM entry_vectors WHERE journal_id = ?", (journal_id,))
            # entries and messages cascade
            self._conn.execute("DELETE FROM journals WHERE id = ?", (journal_id,))
        logger.info("Deleted journal %s", journal_id)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: str) -> Entry | None:
        """Return an entry with its messages and embedding, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE id = ?", (entry_id,)
        ).fetchone()
        if row is None:
            return None
        entry = _row_to_entry(row)
        entry.messages = self._load_messages(entry_id)
        entry.embedding = self._load_embedding(entry_id)
        return entry

    def require_entry(self, entry_id: str) -> Entry:
        """Return the entry or raise EntryNotFound."""
        entry = self.get_entry(entry_id)
        if entry is None:
            raise EntryNotFound(entry_id)
        return entry

    def list_entries(
        self, journal_id: str, status: EntryStatus | None = None
    ) -> list[Entry]:
        """Return the journal's entries, newest first.

        Args:
            journal_id: Owning journal.
            status: Restrict to drafts or finalized entries.
        """
        sql = f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE journal_id = ?"
        params: list[object] = [journal_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(EntryStatus(status).value)
        sql += " ORDER BY created_at DESC, rowid DESC"
        entries = [_row_to_entry(r) for r in self._conn.execute(sql, params).fetchall()]
        for entry in entries:
            entry.messages = self._load_messages(entry.id)
            entry.embedding = self._load_embedding(entry.id)
        return entries

    def list_missing_embeddings(self, journal_id: str) -> list[Entry]:
        """Finalized entries of *journal_id* that have no stored vector, oldest first."""
        rows = self._conn.execute(
            f"""
            SELECT {", ".join("e." + c for c in _ENTRY_COLUMNS.split(", "))}
            FROM entries e
            LEFT JOIN entry_vectors v ON v.entry_id = e.id
            WHERE e.journal_id = ? AND e.status = 'finalized' AND v.entry_id IS NULL
            ORDER BY e.finalized_at, e.rowid
            """,
            (journal_id,),
        ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def save_entry(self, entry: Entry) -> None:
        """Insert or update *entry* and append any new messages.

        Raises:
            JournalNotFound: If the owning journal does not exist.
            EntryImmutable: If the stored entry is finalized and *entry* differs
                from it in messages, summary or status.
            StoreInconsistency: If *entry* rewrites messages already stored, or
                violates the draft/finalized field invariants.
        """
        _check_invariants(entry)
        with transaction(self._conn):
            stored_row = self._conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE id = ?", (entry.id,)
            ).fetchone()

            if stored_row is None:
                if self.get_journal(entry.journal_id) is None:
                    raise JournalNotFound(entry.journal_id)
                self._conn.execute(
                    f"INSERT INTO entries ({_ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        entry.id,
                        entry.journal_id,
                        entry.status.value,
                        entry.summary,
                        entry.created_at,
                        entry.finalized_at,
                    ),
                )
                self._insert_messages(entry.id, entry.messages, start=0)
                return

            stored = _row_to_entry(stored_row)
            stored_messages = self._load_messages(entry.id)

            if stored.is_finalized:
                if (
                    not entry.is_finalized
                    or entry.summary != stored.summary
                    or entry.messages != stored_messages
                ):
                    raise EntryImmutable(entry.id)
                return

            if entry.journal_id != stored.journal_id:
                raise StoreInconsistency(
                    f"Entry '{entry.id}' cannot move to another journal."
                )
            if entry.messages[: len(stored_messages)] != stored_messages:
                raise StoreInconsistency(
                    f"Entry '{entry.id}': stored messages may only be appended to."
                )

            self._conn.execute(
                "UPDATE entries SET status = ?, summary = ?, finalized_at = ? WHERE id = ?",
                (entry.status.value, entry.summary, entry.finalized_at, entry.id),
            )
            self._insert_messages(
                entry.id, entry.messages[len(stored_messages):], start=len(stored_messages)
            )

    def delete_entry(self, entry_id: str) -> None:
        """Delete an entry, its messages and its vector. No-op if absent."""
        with transaction(self._conn):
            self._conn.execute("DELETE FROM entry_vectors WHERE entry_id = ?", (entry_id,))
            self._conn.execute("DELETE FROM entries WHERE id = ?", (entry_id,))

    def count_entries(self, journal_id: str, status: EntryStatus | None = None) -> int:
        if status is None:
            return self._conn.execute(
                "SELECT COUNT(*) FROM entries WHERE journal_id = ?", (journal_id,)
            ).fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM entries WHERE journal_id = ? AND status = ?",
            (journal_id, EntryStatus(status).value),
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _load_messages(self, entry_id: str) -> list[Message]:
        rows = self._conn.execute(
            """
            SELECT role, content, metadata, created_at FROM messages
            WHERE entry_id = ? ORDER BY seq
            """,
            (entry_id,),
        ).fetchall()
        return [_row_to_message(r) for r in rows]

    def _insert_messages(self, entry_id: str, messages: list[Message], start: int) -> None:
        self._conn.executemany(
            """
            INSERT INTO messages (entry_id, seq, role, content, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    entry_id,
                    start + i,
                    m.role.value,
                    m.content,
                    json.dumps(m.metadata),
                    m.created_at,
                )
                for i, m in enumerate(messages)
            ],
        )

    def _load_embedding(self, entry_id: str) -> list[float] | None:
        return VectorStore(self._conn).get(entry_id)


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _check_invariants(entry: Entry) -> None:
    if entry.is_finalized:
        if not entry.summary:
            raise StoreInconsistency(f"Finalized entry '{entry.id}' has no summary.")
        if entry.finalized_at is None:
            raise StoreInconsistency(f"Finalized entry '{entry.id}' has no finalized_at.")
    elif entry.summary is not None or entry.embedding is not None or entry.finalized_at:
        raise StoreInconsistency(
            f"Draft entry '{entry.id}' must not carry a summary, embedding or finalized_at."
        )


def _row_to_journal(row: sqlite3.Row) -> Journal:
    return Journal(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        rag_enabled=bool(row["rag_enabled"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_entry(row: sqlite3.Row) -> Entry:
    return Entry(
        id=row["id"],
        journal_id=row["journal_id"],
        status=EntryStatus(row["status"]),
        summary=row["summary"],
        created_at=row["created_at"],
        finalized_at=row["finalized_at"],
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        content=row["content"],
        role=MessageRole(row["role"]),
        created_at=row["created_at"],
        metadata=json.loads(row["metadata"]),
    )
