"""Tests for inkwell rich error messages."""

from __future__ import annotations

import pytest

from inkwell.cli.errors import (
    err_inkwell,
    err_journal_not_found,
    err_no_api_key,
    err_no_db,
    render_system_error,
    warn_embedding_missing,
)
from inkwell.errors import AuthError, EntryImmutable, NetworkError, QuotaExceeded


def _has_action(msg: str) -> bool:
    """Every error must contain a cause AND an actionable instruction."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "set:", "check ", "export "])


def test_err_no_db():
    msg = err_no_db("my.db")
    assert "my.db" in msg
    assert _has_action(msg)


def test_err_journal_not_found():
    msg = err_journal_not_found("Work")
    assert "Work" in msg
    assert _has_action(msg)


@pytest.mark.parametrize("model,env_var", [
    ("openai/gpt-4o-mini", "OPENAI_API_KEY"),
    ("anthropic/claude-3-5-haiku", "ANTHROPIC_API_KEY"),
    ("myprovider/model", "MYPROVIDER_API_KEY"),
])
def test_err_no_api_key(model, env_var):
    msg = err_no_api_key(model)
    assert env_var in msg
    assert _has_action(msg)


@pytest.mark.parametrize("exc", [AuthError("rejected"), QuotaExceeded("limit")])
def test_err_inkwell_hints_for_user_action(exc):
    msg = err_inkwell(exc)
    assert exc.user_message in msg
    assert _has_action(msg)


def test_err_inkwell_plain():
    msg = err_inkwell(EntryImmutable("e1"))
    assert "can no longer be changed" in msg
    assert "e1" in msg


def test_render_system_error():
    assert NetworkError.user_message in render_system_error(NetworkError.user_message)


def test_warn_embedding_missing_plural():
    assert "1 finished entry " in warn_embedding_missing(1)
    assert "3 finished entries" in warn_embedding_missing(3)
    assert "inkwell reembed" in warn_embedding_missing(3)
