"""Conversation state machine: the draft lifecycle of a journal entry.

States::

    idle ──start/resume──▶ active ──finish(confirmed)──▶ finishing ──▶ finalized
                            │  ▲                            │
                            │  └──── summary failed ────────┘
                            └──cancel(confirmed)──▶ cancelled

``active`` loops on itself through submit_message. ``finalized`` and
``cancelled`` are terminal. Each entry allows one in-flight operation at a
time; a second concurrent call fails fast with OperationInProgress.

Nothing is written for a provider call that is cancelled or times out, so an
abandoned request leaves the entry exactly as it was before the call.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum

from inkwell.config import InkwellConfig, RetrievalCfg
from inkwell.db.models import Entry, EntryStatus, Message, MessageRole, utc_now
from inkwell.db.repository import EntryStore
from inkwell.db.vectors import VectorStore
from inkwell.errors import (
    AuthError,
    ConfirmationRequired,
    DimensionMismatch,
    EmbeddingUnavailable,
    EntryImmutable,
    EntryNotActive,
    InkwellError,
    InvalidInput,
    InvalidRequest,
    OperationInProgress,
    ProviderError,
    QuotaExceeded,
    RequestTimeout,
)
from inkwell.rag.gateway import EmbeddingGateway
from inkwell.rag.llm_client import EmbeddingProvider, GenerationProvider, LiteLLMProvider
from inkwell.rag.prompts import build_summary_prompt, build_turn_prompt
from inkwell.rag.retriever import ContextRetriever, RetrievedContext

logger = logging.getLogger(__name__)


class ConversationState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    FINISHING = "finishing"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


@dataclass
class ConversationView:
    """What the UI layer gets back from every operation.

    Attributes:
        entry_id: The entry the operation acted on.
        journal_id: Owning journal.
        state: Conversation state after the operation.
        messages: Full transcript after the operation.
        summary: Set once the entry is finalized.
        error: A recovered failure to show inline (the transcript already
            contains a matching system_error message, except for embedding
            failures during finalize).
        context: Past entries injected into the last generation prompt.
    """

    entry_id: str
    journal_id: str
    state: ConversationState
    messages: list[Message] = field(default_factory=list)
    summary: str | None = None
    error: InkwellError | None = None
    context: list[RetrievedContext] = field(default_factory=list)


class JournalSession:
    """UI-facing operations over journals and their draft entries.

    Args:
        entries: Entry Store (journals, entries, messages).
        vectors: Vector Store for finalized-entry embeddings.
        retriever: Context retriever used for turn prompts and search.
        gateway: Embedding gateway used for entry summaries.
        generator: External text generation provider.
        config: Generation settings (persona, timeout, history budget).
    """

    def __init__(
        self,
        entries: EntryStore,
        vectors: VectorStore,
        retriever: ContextRetriever,
        gateway: EmbeddingGateway,
        generator: GenerationProvider,
        config: InkwellConfig | None = None,
    ) -> None:
        self._entries = entries
        self._vectors = vectors
        self._retriever = retriever
        self._gateway = gateway
        self._generator = generator
        self._config = config or InkwellConfig()
        self._states: dict[str, ConversationState] = {}
        self._in_flight: set[str] = set()

    @classmethod
    def create(
        cls,
        conn: sqlite3.Connection,
        config: InkwellConfig | None = None,
        *,
        generator: GenerationProvider | None = None,
        embedder: EmbeddingProvider | None = None,
    ) -> JournalSession:
        """Wire stores, gateway and retriever over one open connection.

        Providers default to a shared LiteLLMProvider built from *config*.
        """
        config = config or InkwellConfig()
        if generator is None or embedder is None:
            default = LiteLLMProvider(config.generation, config.embedding)
            generator = generator or default
            embedder = embedder or default
        entries = EntryStore(conn)
        vectors = VectorStore(conn, dimensions=config.embedding.dimensions)
        gateway = EmbeddingGateway(embedder, config.embedding)
        retriever = ContextRetriever(entries, vectors, gateway, config.retrieval)
        return cls(entries, vectors, retriever, gateway, generator, config)

    @property
    def entries(self) -> EntryStore:
        return self._entries

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    def state_of(self, entry_id: str) -> ConversationState:
        """Current state of *entry_id*.

        Raises:
            EntryNotFound: Unknown entry that was not cancelled in this session.
        """
        if self._states.get(entry_id) is ConversationState.CANCELLED:
            return ConversationState.CANCELLED
        entry = self._entries.require_entry(entry_id)
        return self._state_for(entry)

    def view(self, entry_id: str) -> ConversationView:
        return self._view(self._entries.require_entry(entry_id))

    # ------------------------------------------------------------------
    # idle → active
    # ------------------------------------------------------------------

    def start_entry(self, journal_id: str) -> ConversationView:
        """Create a new draft in *journal_id* and make it active.

        Raises:
            JournalNotFound: Unknown journal.
        """
        self._entries.require_journal(journal_id)
        entry = Entry(journal_id=journal_id)
        self._entries.save_entry(entry)
        self._states[entry.id] = ConversationState.ACTIVE
        logger.info("Started entry %s in journal %s", entry.id, journal_id)
        return self._view(entry)

    def resume_entry(self, entry_id: str) -> ConversationView:
        """Make an existing draft active again.

        Raises:
            EntryNotFound: Unknown or cancelled entry.
            EntryImmutable: The entry is finalized.
        """
        entry = self._entries.require_entry(entry_id)
        if entry.is_finalized:
            raise EntryImmutable(entry_id)
        if self._state_for(entry) is ConversationState.IDLE:
            self._states[entry_id] = ConversationState.ACTIVE
            logger.info("Resumed entry %s", entry_id)
        return self._view(entry)

    # ------------------------------------------------------------------
    # active → active
    # ------------------------------------------------------------------

    async def submit_message(self, entry_id: str, text: str) -> ConversationView:
        """Append a user message and the assistant's reply.

        Provider failures are recovered: the user message and a system_error
        message are stored and the entry stays active.

        Raises:
            OperationInProgress: Another operation on this entry is running.
            EntryImmutable: The entry is finalized.
            EntryNotActive: The entry is not active (start or resume it first).
            InvalidInput: *text* is blank.
            RequestTimeout: Generation timed out; nothing was stored.
        """
        with self._exclusive(entry_id):
            entry = self._require_active(entry_id)
            content = text.strip()
            if not content:
                raise InvalidInput("Message must not be empty.")
            user_message = Message(content=content, role=MessageRole.USER)

            context = await self._retriever.retrieve_context(entry.journal_id, content)
            prompt = build_turn_prompt(
                self._config.generation, context, entry.messages, content
            )
            try:
                reply = await self._generate(prompt)
            except RequestTimeout:
                logger.warning("Generation timed out for entry %s; turn dropped", entry_id)
                raise
            except ProviderError as exc:
                logger.warning("Generation failed for entry %s: %s", entry_id, exc.kind)
                entry.messages.extend([user_message, _error_message(exc)])
                self._entries.save_entry(entry)
                return self._view(entry, error=exc, context=context)

            assistant_message = Message(
                content=reply,
                role=MessageRole.ASSISTANT,
                metadata={"context_entry_ids": [c.entry_id for c in context]},
            )
            entry.messages.extend([user_message, assistant_message])
            self._entries.save_entry(entry)
            return self._view(entry, context=context)

    # ------------------------------------------------------------------
    # active → finishing → finalized
    # ------------------------------------------------------------------

    async def finish_entry(self, entry_id: str, confirmed: bool) -> ConversationView:
        """Summarise, embed and finalize the entry.

        A failed summary returns the entry to active with a system_error
        message. A failed embedding still finalizes the entry, without a
        vector (see reembed_missing); ``view.error`` reports it.

        Raises:
            OperationInProgress: Another operation on this entry is running.
            EntryImmutable: The entry is already finalized.
            EntryNotActive: The entry is not active.
            ConfirmationRequired: *confirmed* is False; nothing changes.
            InvalidInput: The entry has no user message to summarise.
            RequestTimeout: Summary generation timed out; nothing was stored.
        """
        with self._exclusive(entry_id):
            entry = self._require_active(entry_id)
            if not confirmed:
                raise ConfirmationRequired("Finishing an entry must be confirmed.")
            if not any(m.role is MessageRole.USER for m in entry.messages):
                raise InvalidInput("Write something before finishing the entry.")

            self._states[entry_id] = ConversationState.FINISHING
            finalized = False
            try:
                try:
                    summary = await self._generate(
                        build_summary_prompt(self._config.generation, entry.messages)
                    )
                except RequestTimeout:
                    logger.warning("Summary timed out for entry %s", entry_id)
                    raise
                except ProviderError as exc:
                    logger.warning("Summary failed for entry %s: %s", entry_id, exc.kind)
                    entry.messages.append(_error_message(exc))
                    self._entries.save_entry(entry)
                    self._states[entry_id] = ConversationState.ACTIVE
                    return self._view(entry, error=exc)

                vector, embed_error = await self._embed_summary(entry_id, summary)

                now = utc_now()
                entry.messages.append(
                    Message(
                        content=summary,
                        role=MessageRole.ASSISTANT,
                        created_at=now,
                        metadata={"summary": True},
                    )
                )
                entry.summary = summary
                entry.status = EntryStatus.FINALIZED
                entry.finalized_at = now
                entry.embedding = vector
                with self._entries.atomic():
                    self._entries.save_entry(entry)
                    if vector is not None:
                        self._vectors.upsert(entry.id, entry.journal_id, vector)
                finalized = True
            finally:
                # Finalized is read from the store from here on.
                if finalized:
                    self._states.pop(entry_id, None)
                else:
                    self._states[entry_id] = ConversationState.ACTIVE

            if vector is None:
                logger.warning("Entry %s finalized without embedding", entry_id)
            else:
                logger.info("Finalized entry %s", entry_id)
            return self._view(entry, error=embed_error)

    async def _embed_summary(
        self, entry_id: str, summary: str
    ) -> tuple[list[float] | None, InkwellError | None]:
        try:
            vector = await self._gateway.embed(summary)
        except (EmbeddingUnavailable, AuthError, QuotaExceeded, InvalidInput) as exc:
            logger.warning("Embedding failed for entry %s: %s", entry_id, exc.kind)
            return None, exc
        expected = self._vectors.dimensions
        if expected is not None and len(vector) != expected:
            exc = DimensionMismatch(expected, len(vector))
            logger.warning("Embedding for entry %s has wrong size: %s", entry_id, exc)
            return None, exc
        return vector, None

    # ------------------------------------------------------------------
    # active → cancelled
    # ------------------------------------------------------------------

    def cancel_entry(self, entry_id: str, confirmed: bool) -> ConversationView:
        """Discard a draft entry and all its messages.

        Raises:
            OperationInProgress: Another operation on this entry is running.
            EntryNotFound: Unknown or already cancelled entry.
            EntryImmutable: The entry is finalized.
            ConfirmationRequired: *confirmed* is False; nothing changes.
        """
        with self._exclusive(entry_id):
            entry = self._entries.require_entry(entry_id)
            if entry.is_finalized:
                raise EntryImmutable(entry_id)
            if not confirmed:
                raise ConfirmationRequired("Discarding an entry must be confirmed.")
            self._entries.delete_entry(entry_id)
            self._states[entry_id] = ConversationState.CANCELLED
            logger.info("Cancelled entry %s", entry_id)
            return ConversationView(
                entry_id=entry_id,
                journal_id=entry.journal_id,
                state=ConversationState.CANCELLED,
            )

    # ------------------------------------------------------------------
    # Search + maintenance
    # ------------------------------------------------------------------

    async def search(
        self,
        journal_id: str,
        query_text: str,
        options: RetrievalCfg | None = None,
    ) -> list[RetrievedContext]:
        """Rank the journal's finalized entries against *query_text*.

        *options* overrides the configured top_k and min_score for this call.
        """
        return await self._retriever.search(journal_id, query_text, options)

    async def reembed_missing(self, journal_id: str) -> int:
        """Embed finalized entries that have no vector. Returns the number repaired.

        Entries whose embedding is unavailable are skipped and stay
        unreachable by retrieval until a later pass.

        Raises:
            JournalNotFound: Unknown journal.
            AuthError, QuotaExceeded: Aborts the pass; needs user action.
        """
        self._entries.require_journal(journal_id)
        missing = self._entries.list_missing_embeddings(journal_id)
        repaired = 0
        for entry in missing:
            if entry.id in self._in_flight:
                continue
            with self._exclusive(entry.id):
                try:
                    vector = await self._gateway.embed(entry.summary or "")
                    self._vectors.upsert(entry.id, entry.journal_id, vector)
                except (EmbeddingUnavailable, InvalidInput) as exc:
                    logger.warning("Re-embedding entry %s failed: %s", entry.id, exc)
                    continue
            repaired += 1
        logger.info(
            "Re-embedded %d of %d entries in journal %s", repaired, len(missing), journal_id
        )
        return repaired

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _exclusive(self, entry_id: str) -> Iterator[None]:
        if entry_id in self._in_flight:
            raise OperationInProgress(entry_id)
        self._in_flight.add(entry_id)
        try:
            yield
        finally:
            self._in_flight.discard(entry_id)

    def _state_for(self, entry: Entry) -> ConversationState:
        if entry.is_finalized:
            return ConversationState.FINALIZED
        return self._states.get(entry.id, ConversationState.IDLE)

    def _require_active(self, entry_id: str) -> Entry:
        entry = self._entries.require_entry(entry_id)
        if entry.is_finalized:
            raise EntryImmutable(entry_id)
        state = self._state_for(entry)
        if state is not ConversationState.ACTIVE:
            raise EntryNotActive(entry_id, state.value)
        return entry

    async def _generate(self, prompt: str) -> str:
        timeout = self._config.generation.timeout_seconds
        try:
            if timeout is None:
                text = await self._generator.generate_text(prompt)
            else:
                text = await asyncio.wait_for(self._generator.generate_text(prompt), timeout)
        except asyncio.TimeoutError as exc:
            raise RequestTimeout(f"Generation timed out after {timeout}s") from exc
        text = (text or "").strip()
        if not text:
            raise InvalidRequest("The assistant returned an empty response.")
        return text

    def _view(
        self,
        entry: Entry,
        *,
        error: InkwellError | None = None,
        context: list[RetrievedContext] | None = None,
    ) -> ConversationView:
        return ConversationView(
            entry_id=entry.id,
            journal_id=entry.journal_id,
            state=self._state_for(entry),
            messages=list(entry.messages),
            summary=entry.summary,
            error=error,
            context=list(context or []),
        )


def _error_message(exc: InkwellError) -> Message:
    return Message(
        content=exc.user_message,
        role=MessageRole.SYSTEM_ERROR,
        metadata={"error": exc.kind, "detail": str(exc)},
    )
