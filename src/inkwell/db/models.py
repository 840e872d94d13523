"""Domain models for the Inkwell database layer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EntryStatus(str, Enum):
    DRAFT = "draft"
    FINALIZED = "finalized"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM_ERROR = "system_error"


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string with microseconds.

    Fixed-width output keeps lexicographic and chronological order identical.
    """
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Journal:
    name: str
    description: str = ""
    rag_enabled: bool = True
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class Message:
    content: str
    role: MessageRole
    created_at: str = field(default_factory=utc_now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "role": self.role.value,
            "created_at": self.created_at,
            "metadata": dict(self.metadata),
        }


@dataclass
class Entry:
    journal_id: str
    messages: list[Message] = field(default_factory=list)
    summary: str | None = None
    embedding: list[float] | None = None  # loaded from entry_vectors; never exported
    status: EntryStatus = EntryStatus.DRAFT
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)
    finalized_at: str | None = None

    @property
    def is_finalized(self) -> bool:
        return self.status is EntryStatus.FINALIZED

    def to_dict(self) -> dict[str, Any]:
        """Export shape for the surrounding app. Embeddings are left out."""
        return {
            "id": self.id,
            "journal_id": self.journal_id,
            "status": self.status.value,
            "summary": self.summary,
            "created_at": self.created_at,
            "finalized_at": self.finalized_at,
            "messages": [m.to_dict() for m in self.messages],
        }
