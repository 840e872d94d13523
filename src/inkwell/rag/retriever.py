"""Context retriever: past finalized-entry summaries relevant to a query.

Pipeline:
  1. Skip entirely when the journal has RAG disabled (no embedding call).
  2. Embed the query through the EmbeddingGateway.
  3. Cosine top-K over the journal's vectors, filtered by min_score.
  4. Map entry ids to summaries, dropping ids the Entry Store can't resolve.

``retrieve_context`` is best-effort prompt enrichment and swallows provider
failures; ``search`` is an explicit user request and raises them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from inkwell.config import RetrievalCfg
from inkwell.db.repository import EntryStore
from inkwell.db.vectors import VectorMatch, VectorStore
from inkwell.errors import InkwellError
from inkwell.rag.gateway import EmbeddingGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievedContext:
    """A past entry's summary together with its similarity to the query."""

    entry_id: str
    summary: str
    score: float


class ContextRetriever:
    """Ranks a journal's finalized entries against a query text.

    Args:
        entries: Entry Store used for the RAG flag and summaries.
        vectors: Vector Store holding finalized-entry embeddings.
        gateway: Embedding gateway for the query text.
        config: Default retrieval tuning; callers may pass per-call options.
    """

    def __init__(
        self,
        entries: EntryStore,
        vectors: VectorStore,
        gateway: EmbeddingGateway,
        config: RetrievalCfg | None = None,
    ) -> None:
        self._entries = entries
        self._vectors = vectors
        self._gateway = gateway
        self._config = config or RetrievalCfg()

    async def retrieve_context(
        self,
        journal_id: str,
        query_text: str,
        options: RetrievalCfg | None = None,
    ) -> list[RetrievedContext]:
        """Return relevant past summaries for prompt enrichment, best first.

        Never raises for embedding or provider failures; returns [] instead.
        """
        if not self._entries.is_rag_enabled(journal_id):
            return []

        try:
            query_vector = await self._gateway.embed(query_text)
        except InkwellError as exc:
            logger.info("Context retrieval skipped for journal %s: %s", journal_id, exc.kind)
            return []

        try:
            matches = self._query(journal_id, query_vector, options)
        except InkwellError as exc:
            logger.warning("Vector query failed for journal %s: %s", journal_id, exc)
            return []
        return self._resolve(matches)

    async def search(
        self,
        journal_id: str,
        query_text: str,
        options: RetrievalCfg | None = None,
    ) -> list[RetrievedContext]:
        """Explicit search over a journal's finalized entries, best first.

        Raises:
            JournalNotFound: Unknown journal.
            InvalidInput: Blank query or query vector of the wrong size.
            EmbeddingUnavailable, AuthError, QuotaExceeded: Embedding failed.
        """
        self._entries.require_journal(journal_id)
        query_vector = await self._gateway.embed(query_text)
        return self._resolve(self._query(journal_id, query_vector, options))

    def _query(
        self,
        journal_id: str,
        query_vector: list[float],
        options: RetrievalCfg | None,
    ) -> list[VectorMatch]:
        cfg = options or self._config
        return self._vectors.query(journal_id, query_vector, k=cfg.top_k, min_score=cfg.min_score)

    def _resolve(self, matches: list[VectorMatch]) -> list[RetrievedContext]:
        results: list[RetrievedContext] = []
        for match in matches:
            entry = self._entries.get_entry(match.entry_id)
            if entry is None or not entry.is_finalized or not entry.summary:
                logger.warning(
                    "Store inconsistency: vector for entry %s has no finalized entry",
                    match.entry_id,
                )
                continue
            results.append(
                RetrievedContext(entry_id=entry.id, summary=entry.summary, score=match.score)
            )
        return results
