"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from fakes import FakeEmbedder, FakeGenerator
from inkwell.config import InkwellConfig
from inkwell.conversation import JournalSession
from inkwell.db.connection import Database
from inkwell.db.models import Journal
from inkwell.db.repository import EntryStore
from inkwell.db.schema import initialize
from inkwell.db.vectors import VectorStore


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".inkwell.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def store(tmp_db):
    return EntryStore(tmp_db)


@pytest.fixture
def vectors(tmp_db):
    return VectorStore(tmp_db)


@pytest.fixture
def journal(store):
    """A RAG-enabled journal named 'Work'."""
    return store.create_journal(Journal(name="Work"))


@pytest.fixture
def config():
    """Default config without backoff delays."""
    cfg = InkwellConfig()
    cfg.embedding.base_delay = 0.0
    return cfg


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def session(tmp_db, config, generator, embedder):
    return JournalSession.create(tmp_db, config, generator=generator, embedder=embedder)
