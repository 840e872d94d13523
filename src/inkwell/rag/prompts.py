"""Prompt assembly for conversation turns and entry summaries.

Turn prompt layout:
  1. System persona
  2. Retrieved past-entry summaries (omitted when there are none)
  3. Conversation history, oldest first, trimmed from the front to fit
     ``history_token_budget``
  4. The new user message

System-error messages never enter the prompt; they are for the user only.
"""

from __future__ import annotations

from inkwell.config import GenerationCfg
from inkwell.db.models import Message, MessageRole
from inkwell.rag.llm_client import count_tokens
from inkwell.rag.retriever import RetrievedContext

_CONTEXT_HEADER = (
    "Summaries of the user's earlier journal entries that may be relevant "
    "(most relevant first):"
)

_SUMMARY_INSTRUCTION = """\
The user has finished this journal entry. Write a concise summary (2-4 \
sentences, second person, e.g. "You felt...") of what they wrote about and \
how they felt. It will be shown to them as the closing message of the entry \
and used to recall this entry in future conversations. Reply with the summary \
only."""

_ROLE_LABELS = {
    MessageRole.USER: "User",
    MessageRole.ASSISTANT: "Assistant",
}


def build_turn_prompt(
    config: GenerationCfg,
    context: list[RetrievedContext],
    history: list[Message],
    new_message: str,
) -> str:
    """Return the generation prompt for a conversation turn."""
    sections = [config.persona.strip()]
    if context:
        sections.append(_format_context(context))
    transcript = _format_history(history, config)
    if transcript:
        sections.append("Conversation so far:\n" + transcript)
    sections.append(f"User: {new_message}\nAssistant:")
    return "\n\n".join(sections)


def build_summary_prompt(config: GenerationCfg, history: list[Message]) -> str:
    """Return the prompt asking for the entry's closing summary."""
    sections = [config.persona.strip()]
    transcript = _format_history(history, config)
    if transcript:
        sections.append("Journal entry conversation:\n" + transcript)
    sections.append(_SUMMARY_INSTRUCTION)
    return "\n\n".join(sections)


def _format_context(context: list[RetrievedContext]) -> str:
    lines = [_CONTEXT_HEADER]
    lines.extend(f"- {item.summary}" for item in context)
    return "\n".join(lines)


def _format_history(history: list[Message], config: GenerationCfg) -> str:
    """Render conversational messages, dropping the oldest beyond the token budget."""
    lines = [
        f"{_ROLE_LABELS[m.role]}: {m.content}"
        for m in history
        if m.role in _ROLE_LABELS
    ]
    kept: list[str] = []
    total = 0
    for line in reversed(lines):
        tokens = count_tokens(config.model, line)
        if kept and total + tokens > config.history_token_budget:
            break
        kept.append(line)
        total += tokens
    kept.reverse()
    return "\n".join(kept)
