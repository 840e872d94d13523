"""Tests for the conversation state machine (JournalSession)."""

from __future__ import annotations

import asyncio

import pytest

from fakes import FakeEmbedder, FakeGenerator
from inkwell.config import RetrievalCfg
from inkwell.conversation import ConversationState, JournalSession
from inkwell.db.models import EntryStatus, Journal, MessageRole
from inkwell.errors import (
    AuthError,
    ConfirmationRequired,
    DimensionMismatch,
    EmbeddingUnavailable,
    EntryImmutable,
    EntryNotActive,
    EntryNotFound,
    InvalidInput,
    JournalNotFound,
    NetworkError,
    OperationInProgress,
    QuotaExceeded,
    RequestTimeout,
)

_STRESSED = "I'm stressed about a deadline"
_SUMMARY = "You felt stressed about a deadline."
_FOLLOW_UP = "The deadline is tomorrow and I'm behind"


@pytest.fixture
def embedder():
    return FakeEmbedder(
        vectors={
            _SUMMARY: [0.1, 0.2, 0.3],
            _FOLLOW_UP: [0.11, 0.19, 0.31],
        },
        default=[0.0, 0.0, 1.0],
    )


async def _finished_entry(session, journal, text=_STRESSED, summary=_SUMMARY):
    """Start, write one turn, and finish an entry; return its id."""
    view = session.start_entry(journal.id)
    session._generator.replies = ["Tell me more", summary]
    await session.submit_message(view.entry_id, text)
    await session.finish_entry(view.entry_id, confirmed=True)
    return view.entry_id


# ------------------------------------------------------------------
# End-to-end scenarios
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_first_turn_stores_user_and_assistant_messages(session, journal, generator):
    view = session.start_entry(journal.id)
    assert view.state is ConversationState.ACTIVE

    view = await session.submit_message(view.entry_id, _STRESSED)

    assert [m.role for m in view.messages] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert view.messages[1].content == "Tell me more"
    assert view.state is ConversationState.ACTIVE
    stored = session.entries.get_entry(view.entry_id)
    assert stored.status is EntryStatus.DRAFT
    assert len(stored.messages) == 2


@pytest.mark.asyncio
async def test_finish_summarises_embeds_and_finalizes(session, journal, generator):
    view = session.start_entry(journal.id)
    await session.submit_message(view.entry_id, _STRESSED)
    generator.replies = [_SUMMARY]

    view = await session.finish_entry(view.entry_id, confirmed=True)

    assert view.state is ConversationState.FINALIZED
    assert view.summary == _SUMMARY
    assert view.error is None
    assert view.messages[-1].content == _SUMMARY
    assert view.messages[-1].metadata == {"summary": True}
    stored = session.entries.get_entry(view.entry_id)
    assert stored.status is EntryStatus.FINALIZED
    assert stored.summary == _SUMMARY
    assert stored.finalized_at is not None
    assert stored.embedding == pytest.approx([0.1, 0.2, 0.3])


@pytest.mark.asyncio
async def test_new_entry_recalls_related_past_entry(session, journal, generator):
    past_id = await _finished_entry(session, journal)

    view = session.start_entry(journal.id)
    generator.replies = ["That sounds hard."]
    view = await session.submit_message(view.entry_id, _FOLLOW_UP)

    assert len(view.context) == 1
    assert view.context[0].entry_id == past_id
    assert "stressed about a deadline." in view.context[0].summary
    assert _SUMMARY in generator.prompts[-1]
    assert view.messages[-1].metadata == {"context_entry_ids": [past_id]}


@pytest.mark.asyncio
async def test_resume_finalized_entry_is_immutable(session, journal):
    entry_id = await _finished_entry(session, journal)
    with pytest.raises(EntryImmutable):
        session.resume_entry(entry_id)


# ------------------------------------------------------------------
# start / resume
# ------------------------------------------------------------------


def test_start_entry_unknown_journal(session):
    with pytest.raises(JournalNotFound):
        session.start_entry("nope")


def test_multiple_active_drafts_allowed(session, journal):
    a = session.start_entry(journal.id)
    b = session.start_entry(journal.id)
    assert session.state_of(a.entry_id) is ConversationState.ACTIVE
    assert session.state_of(b.entry_id) is ConversationState.ACTIVE


@pytest.mark.asyncio
async def test_draft_from_previous_session_is_idle_until_resumed(session, journal, tmp_db, config):
    view = session.start_entry(journal.id)
    await session.submit_message(view.entry_id, "Hello")

    later = JournalSession.create(
        tmp_db, config, generator=FakeGenerator(), embedder=FakeEmbedder()
    )
    assert later.state_of(view.entry_id) is ConversationState.IDLE
    with pytest.raises(EntryNotActive):
        await later.submit_message(view.entry_id, "More")

    resumed = later.resume_entry(view.entry_id)
    assert resumed.state is ConversationState.ACTIVE
    assert [m.content for m in resumed.messages] == ["Hello", "Tell me more"]


def test_resume_unknown_entry(session):
    with pytest.raises(EntryNotFound):
        session.resume_entry("nope")


# ------------------------------------------------------------------
# submit_message
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_submit_blank_message(session, journal, generator):
    view = session.start_entry(journal.id)
    with pytest.raises(InvalidInput):
        await session.submit_message(view.entry_id, "   ")
    assert generator.prompts == []


@pytest.mark.asyncio
async def test_submit_to_finalized_entry(session, journal):
    entry_id = await _finished_entry(session, journal)
    with pytest.raises(EntryImmutable):
        await session.submit_message(entry_id, "one more thing")


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [NetworkError("down"), AuthError("bad"), QuotaExceeded("out")])
async def test_provider_failure_adds_system_error(session, journal, generator, error):
    view = session.start_entry(journal.id)
    generator.replies = [error]

    view = await session.submit_message(view.entry_id, "Hello")

    assert view.state is ConversationState.ACTIVE
    assert view.error is error
    assert [m.role for m in view.messages] == [MessageRole.USER, MessageRole.SYSTEM_ERROR]
    assert view.messages[1].content == error.user_message
    assert view.messages[1].metadata["error"] == error.kind
    assert len(session.entries.get_entry(view.entry_id).messages) == 2


@pytest.mark.asyncio
async def test_conversation_continues_after_provider_failure(session, journal, generator):
    view = session.start_entry(journal.id)
    generator.replies = [NetworkError("down")]
    await session.submit_message(view.entry_id, "Hello")

    view = await session.submit_message(view.entry_id, "Hello again")

    assert view.error is None
    assert len(view.messages) == 4
    assert "could not be reached" not in generator.prompts[-1]


@pytest.mark.asyncio
async def test_generation_timeout_stores_nothing(session, journal, generator, config):
    config.generation.timeout_seconds = 0.01
    view = session.start_entry(journal.id)
    generator.gate = asyncio.Event()

    with pytest.raises(RequestTimeout):
        await session.submit_message(view.entry_id, "Hello")

    assert session.entries.get_entry(view.entry_id).messages == []
    assert session.state_of(view.entry_id) is ConversationState.ACTIVE


@pytest.mark.asyncio
async def test_empty_reply_is_a_provider_failure(session, journal, generator):
    view = session.start_entry(journal.id)
    generator.replies = ["   "]
    view = await session.submit_message(view.entry_id, "Hello")
    assert view.messages[-1].role is MessageRole.SYSTEM_ERROR


@pytest.mark.asyncio
async def test_retrieval_skipped_when_rag_disabled(session, journal, generator, embedder):
    await _finished_entry(session, journal)
    session.entries.set_rag_enabled(journal.id, False)
    calls_before = len(embedder.calls)

    view = session.start_entry(journal.id)
    view = await session.submit_message(view.entry_id, _FOLLOW_UP)

    assert view.context == []
    assert len(embedder.calls) == calls_before
    assert _SUMMARY not in generator.prompts[-1]


@pytest.mark.asyncio
async def test_turn_survives_embedding_outage(session, journal, generator, embedder):
    await _finished_entry(session, journal)
    embedder.errors = [NetworkError("down")] * 3

    view = session.start_entry(journal.id)
    view = await session.submit_message(view.entry_id, _FOLLOW_UP)

    assert view.error is None
    assert view.context == []
    assert view.messages[-1].role is MessageRole.ASSISTANT


# ------------------------------------------------------------------
# Concurrency
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_concurrent_operation_rejected(session, journal, generator):
    view = session.start_entry(journal.id)
    generator.gate = asyncio.Event()

    first = asyncio.create_task(session.submit_message(view.entry_id, "first"))
    await generator.started.wait()

    with pytest.raises(OperationInProgress):
        await session.submit_message(view.entry_id, "second")
    with pytest.raises(OperationInProgress):
        await session.finish_entry(view.entry_id, confirmed=True)
    with pytest.raises(OperationInProgress):
        session.cancel_entry(view.entry_id, confirmed=True)

    generator.gate.set()
    result = await first
    assert [m.content for m in result.messages] == ["first", "Tell me more"]

    # The lock is released once the call completes.
    generator.gate = None
    view = await session.submit_message(view.entry_id, "second")
    assert len(view.messages) == 4


@pytest.mark.asyncio
async def test_different_entries_run_concurrently(session, journal, generator):
    a = session.start_entry(journal.id)
    b = session.start_entry(journal.id)
    generator.gate = asyncio.Event()

    task_a = asyncio.create_task(session.submit_message(a.entry_id, "a"))
    task_b = asyncio.create_task(session.submit_message(b.entry_id, "b"))
    await asyncio.sleep(0)
    generator.gate.set()

    views = await asyncio.gather(task_a, task_b)
    assert all(v.error is None for v in views)


@pytest.mark.asyncio
async def test_cancelled_submit_leaves_entry_unchanged(session, journal, generator):
    view = session.start_entry(journal.id)
    generator.gate = asyncio.Event()

    task = asyncio.create_task(session.submit_message(view.entry_id, "half a thought"))
    await generator.started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert session.view(view.entry_id).messages == []
    assert session.state_of(view.entry_id) is ConversationState.ACTIVE

    generator.gate = None
    view = await session.submit_message(view.entry_id, "a whole thought")
    assert [m.content for m in view.messages] == ["a whole thought", "Tell me more"]


@pytest.mark.asyncio
async def test_cancelled_finish_returns_to_active(session, journal, generator):
    view = session.start_entry(journal.id)
    await session.submit_message(view.entry_id, _STRESSED)
    generator.started.clear()
    generator.gate = asyncio.Event()

    task = asyncio.create_task(session.finish_entry(view.entry_id, confirmed=True))
    await generator.started.wait()
    assert session.state_of(view.entry_id) is ConversationState.FINISHING
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    current = session.view(view.entry_id)
    assert len(current.messages) == 2
    assert current.summary is None
    assert session.state_of(view.entry_id) is ConversationState.ACTIVE
    assert session.entries.get_entry(view.entry_id).status is EntryStatus.DRAFT

    generator.gate = None
    generator.replies = [_SUMMARY]
    done = await session.finish_entry(view.entry_id, confirmed=True)
    assert done.state is ConversationState.FINALIZED
    assert done.summary == _SUMMARY


# ------------------------------------------------------------------
# finish_entry
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_finish_requires_confirmation(session, journal, generator):
    view = session.start_entry(journal.id)
    await session.submit_message(view.entry_id, "Hello")
    prompts_before = len(generator.prompts)

    with pytest.raises(ConfirmationRequired):
        await session.finish_entry(view.entry_id, confirmed=False)

    assert len(generator.prompts) == prompts_before
    assert session.state_of(view.entry_id) is ConversationState.ACTIVE
    stored = session.entries.get_entry(view.entry_id)
    assert stored.status is EntryStatus.DRAFT
    assert len(stored.messages) == 2


@pytest.mark.asyncio
async def test_finish_empty_entry(session, journal):
    view = session.start_entry(journal.id)
    with pytest.raises(InvalidInput):
        await session.finish_entry(view.entry_id, confirmed=True)
    assert session.state_of(view.entry_id) is ConversationState.ACTIVE


@pytest.mark.asyncio
async def test_finish_twice(session, journal):
    entry_id = await _finished_entry(session, journal)
    with pytest.raises(EntryImmutable):
        await session.finish_entry(entry_id, confirmed=True)


@pytest.mark.asyncio
async def test_summary_failure_returns_to_active(session, journal, generator):
    view = session.start_entry(journal.id)
    await session.submit_message(view.entry_id, "Hello")
    generator.replies = [NetworkError("down")]

    view = await session.finish_entry(view.entry_id, confirmed=True)

    assert view.state is ConversationState.ACTIVE
    assert view.messages[-1].role is MessageRole.SYSTEM_ERROR
    assert session.entries.get_entry(view.entry_id).status is EntryStatus.DRAFT

    generator.replies = [_SUMMARY]
    view = await session.finish_entry(view.entry_id, confirmed=True)
    assert view.state is ConversationState.FINALIZED


@pytest.mark.asyncio
async def test_summary_timeout_stores_nothing(session, journal, generator, config):
    view = session.start_entry(journal.id)
    await session.submit_message(view.entry_id, "Hello")
    config.generation.timeout_seconds = 0.01
    generator.gate = asyncio.Event()

    with pytest.raises(RequestTimeout):
        await session.finish_entry(view.entry_id, confirmed=True)

    assert session.state_of(view.entry_id) is ConversationState.ACTIVE
    stored = session.entries.get_entry(view.entry_id)
    assert stored.status is EntryStatus.DRAFT
    assert len(stored.messages) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error,expected",
    [
        (NetworkError("down"), EmbeddingUnavailable),
        (AuthError("bad key"), AuthError),
        (QuotaExceeded("out"), QuotaExceeded),
    ],
)
async def test_embedding_failure_still_finalizes(session, journal, embedder, vectors, error, expected):
    view = session.start_entry(journal.id)
    await session.submit_message(view.entry_id, "Hello")
    embedder.errors = [error] * 3

    view = await session.finish_entry(view.entry_id, confirmed=True)

    assert view.state is ConversationState.FINALIZED
    assert isinstance(view.error, expected)
    assert not vectors.has_vector(view.entry_id)
    stored = session.entries.get_entry(view.entry_id)
    assert stored.is_finalized
    assert stored.embedding is None
    assert [e.id for e in session.entries.list_missing_embeddings(journal.id)] == [view.entry_id]


@pytest.mark.asyncio
async def test_embedding_size_change_still_finalizes(session, journal, generator, embedder, vectors):
    await _finished_entry(session, journal)
    embedder.default = [1.0, 0.0]

    view = session.start_entry(journal.id)
    await session.submit_message(view.entry_id, "Hello")
    generator.replies = ["You said hello."]
    view = await session.finish_entry(view.entry_id, confirmed=True)

    assert view.state is ConversationState.FINALIZED
    assert isinstance(view.error, DimensionMismatch)
    assert not vectors.has_vector(view.entry_id)


# ------------------------------------------------------------------
# cancel_entry
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_deletes_draft(session, journal):
    view = session.start_entry(journal.id)
    await session.submit_message(view.entry_id, "Hello")

    result = session.cancel_entry(view.entry_id, confirmed=True)

    assert result.state is ConversationState.CANCELLED
    assert session.state_of(view.entry_id) is ConversationState.CANCELLED
    assert session.entries.get_entry(view.entry_id) is None
    with pytest.raises(EntryNotFound):
        session.resume_entry(view.entry_id)


def test_cancel_requires_confirmation(session, journal):
    view = session.start_entry(journal.id)
    with pytest.raises(ConfirmationRequired):
        session.cancel_entry(view.entry_id, confirmed=False)
    assert session.entries.get_entry(view.entry_id) is not None
    assert session.state_of(view.entry_id) is ConversationState.ACTIVE


@pytest.mark.asyncio
async def test_cancel_finalized_entry(session, journal):
    entry_id = await _finished_entry(session, journal)
    with pytest.raises(EntryImmutable):
        session.cancel_entry(entry_id, confirmed=True)
    assert session.entries.get_entry(entry_id).is_finalized


# ------------------------------------------------------------------
# search / reembed_missing
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_search_finds_finalized_entries(session, journal):
    entry_id = await _finished_entry(session, journal)
    results = await session.search(journal.id, _FOLLOW_UP)
    assert [r.entry_id for r in results] == [entry_id]


@pytest.mark.asyncio
async def test_search_options_override_config(session, journal):
    await _finished_entry(session, journal)
    strict = RetrievalCfg(top_k=3, min_score=0.9999)
    assert await session.search(journal.id, _FOLLOW_UP, strict) == []
    loose = RetrievalCfg(top_k=1, min_score=-1.0)
    assert len(await session.search(journal.id, _FOLLOW_UP, loose)) == 1


@pytest.mark.asyncio
async def test_finalized_entry_state_comes_from_store(session, journal):
    entry_id = await _finished_entry(session, journal)
    assert entry_id not in session._states
    assert session.state_of(entry_id) is ConversationState.FINALIZED


@pytest.mark.asyncio
async def test_reembed_missing_repairs_entries(session, journal, embedder, vectors):
    embedder.errors = [NetworkError("down")] * 6
    entry_id = await _finished_entry(session, journal)
    assert not vectors.has_vector(entry_id)

    assert await session.reembed_missing(journal.id) == 1

    assert vectors.get(entry_id) == pytest.approx([0.1, 0.2, 0.3])
    assert session.entries.list_missing_embeddings(journal.id) == []
    assert await session.reembed_missing(journal.id) == 0


@pytest.mark.asyncio
async def test_reembed_missing_skips_unavailable(session, journal, embedder):
    embedder.errors = [NetworkError("down")] * 9
    await _finished_entry(session, journal)
    assert await session.reembed_missing(journal.id) == 0
    assert len(session.entries.list_missing_embeddings(journal.id)) == 1


@pytest.mark.asyncio
async def test_reembed_missing_aborts_on_auth_error(session, journal, embedder):
    embedder.errors = [AuthError("bad key")] * 3
    await _finished_entry(session, journal)
    with pytest.raises(AuthError):
        await session.reembed_missing(journal.id)


@pytest.mark.asyncio
async def test_reembed_missing_unknown_journal(session):
    with pytest.raises(JournalNotFound):
        await session.reembed_missing("nope")


def test_journals_are_isolated(session, store):
    home = store.create_journal(Journal(name="Home"))
    view = session.start_entry(home.id)
    assert view.journal_id == home.id
