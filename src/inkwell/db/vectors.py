"""Per-entry embedding storage and cosine top-K search.

Vectors are encoded by sqlite-vec's ``vec_f32()`` into float32 blobs in
``entry_vectors`` and decoded in Python on read. Queries are an exact linear
scan over one journal's vectors, which keeps tie ordering deterministic:
score desc, then most recent ``finalized_at``, then entry id.
"""

from __future__ import annotations

import json
import logging
import math
import sqlite3
import struct
from collections.abc import Sequence
from dataclasses import dataclass

from inkwell.db.connection import transaction
from inkwell.errors import DimensionMismatch, InvalidInput

logger = logging.getLogger(__name__)

# Stored vectors are float32, so an identical vector can score a hair under 1.0.
_SCORE_TOLERANCE = 1e-6


@dataclass(frozen=True)
class VectorMatch:
    entry_id: str
    score: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of *a* and *b*; 0.0 if either has zero magnitude."""
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    return max(-1.0, min(1.0, score))


class VectorStore:
    """Embeddings for finalized entries, queried per journal.

    Args:
        conn: Open connection with sqlite-vec loaded and schema initialised.
        dimensions: Required vector length. When None, the length of vectors
            already stored (or of the first upsert) is adopted.
    """

    def __init__(self, conn: sqlite3.Connection, dimensions: int | None = None) -> None:
        if dimensions is not None and dimensions < 1:
            raise ValueError(f"dimensions must be >= 1, got {dimensions}")
        self._conn = conn
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int | None:
        if self._dimensions is None:
            row = self._conn.execute(
                "SELECT dimensions FROM entry_vectors LIMIT 1"
            ).fetchone()
            if row is not None:
                self._dimensions = row["dimensions"]
        return self._dimensions

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, entry_id: str, journal_id: str, vector: Sequence[float]) -> None:
        """Insert or replace the vector for *entry_id*.

        Raises:
            DimensionMismatch: If len(vector) differs from the store's dimensionality.
            InvalidInput: If the vector is empty or contains non-finite values.
        """
        values = _validate_vector(vector)
        expected = self.dimensions
        if expected is not None and len(values) != expected:
            raise DimensionMismatch(expected, len(values))

        with transaction(self._conn):
            self._conn.execute(
                """
                INSERT INTO entry_vectors (entry_id, journal_id, dimensions, embedding)
                VALUES (?, ?, ?, vec_f32(?))
                ON CONFLICT(entry_id) DO UPDATE SET
                    journal_id = excluded.journal_id,
                    dimensions = excluded.dimensions,
                    embedding = excluded.embedding
                """,
                (entry_id, journal_id, len(values), json.dumps(values)),
            )
        if self._dimensions is None:
            self._dimensions = len(values)

    def remove(self, entry_id: str) -> None:
        """Delete the vector for *entry_id*; no-op if absent."""
        with transaction(self._conn):
            self._conn.execute("DELETE FROM entry_vectors WHERE entry_id = ?", (entry_id,))

    def remove_journal(self, journal_id: str) -> int:
        """Delete every vector of *journal_id*. Returns the number removed."""
        with transaction(self._conn):
            cur = self._conn.execute(
                "DELETE FROM entry_vectors WHERE journal_id = ?", (journal_id,)
            )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, entry_id: str) -> list[float] | None:
        row = self._conn.execute(
            "SELECT dimensions, embedding FROM entry_vectors WHERE entry_id = ?",
            (entry_id,),
        ).fetchone()
        return _decode(row) if row else None

    def has_vector(self, entry_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM entry_vectors WHERE entry_id = ?", (entry_id,)
        ).fetchone()
        return row is not None

    def count(self, journal_id: str | None = None) -> int:
        if journal_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM entry_vectors").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM entry_vectors WHERE journal_id = ?", (journal_id,)
        ).fetchone()[0]

    def query(
        self,
        journal_id: str,
        query_vector: Sequence[float],
        k: int,
        min_score: float,
    ) -> list[VectorMatch]:
        """Return up to *k* entries of *journal_id* with score >= *min_score*, best first.

        Raises:
            DimensionMismatch: If the query vector length differs from the store's.
        """
        if k < 1:
            return []
        query = _validate_vector(query_vector)
        expected = self.dimensions
        if expected is not None and len(query) != expected:
            raise DimensionMismatch(expected, len(query))

        rows = self._conn.execute(
            """
            SELECT v.entry_id, v.dimensions, v.embedding, e.finalized_at
            FROM entry_vectors v
            LEFT JOIN entries e ON e.id = v.entry_id
            WHERE v.journal_id = ?
            """,
            (journal_id,),
        ).fetchall()

        scored: list[tuple[float, str, str]] = []
        for row in rows:
            score = cosine_similarity(query, _decode(row))
            if score >= min_score - _SCORE_TOLERANCE:
                scored.append((score, row["finalized_at"] or "", row["entry_id"]))

        # Stable sorts, least significant key first.
        scored.sort(key=lambda s: s[2])
        scored.sort(key=lambda s: (s[0], s[1]), reverse=True)
        logger.debug(
            "Vector query on journal %s: %d candidates, %d above %.2f",
            journal_id, len(rows), len(scored), min_score,
        )
        return [VectorMatch(entry_id=entry_id, score=score) for score, _, entry_id in scored[:k]]


def _decode(row: sqlite3.Row) -> list[float]:
    # vec_f32 blobs are packed native-endian float32
    return list(struct.unpack(f"{row['dimensions']}f", row["embedding"]))


def _validate_vector(vector: Sequence[float]) -> list[float]:
    if len(vector) == 0:
        raise InvalidInput("Embedding vector must not be empty.")
    values = [float(x) for x in vector]
    if not all(math.isfinite(x) for x in values):
        raise InvalidInput("Embedding vector contains non-finite values.")
    return values
