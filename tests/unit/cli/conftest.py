"""Fixtures for CLI tests: isolated cwd/config and fake providers."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from fakes import FakeEmbedder, FakeGenerator, FakeProvider
from inkwell.cli.main import app
from inkwell.db.connection import Database
from inkwell.db.repository import EntryStore
from inkwell.db.schema import initialize


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch) -> Path:
    """Run commands in tmp_path with a private global config and an API key set."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("inkwell.config._GLOBAL_CONFIG_PATH", tmp_path / "home" / "config.yaml")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    for var in ("INKWELL_GENERATION_MODEL", "INKWELL_EMBEDDING_MODEL", "INKWELL_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    return tmp_path


@pytest.fixture
def initialized(cli_env: Path, runner: CliRunner) -> Path:
    """cli_env with `inkwell init` and a 'Work' journal already done."""
    assert runner.invoke(app, ["init"]).exit_code == 0
    assert runner.invoke(app, ["journal", "create", "Work"]).exit_code == 0
    return cli_env


@pytest.fixture
def provider(monkeypatch) -> FakeProvider:
    fake = FakeProvider(FakeGenerator(), FakeEmbedder(default=[1.0, 0.0, 0.0]))
    monkeypatch.setattr("inkwell.conversation.LiteLLMProvider", lambda *args, **kwargs: fake)
    return fake


@pytest.fixture
def db_store(initialized: Path):
    """EntryStore on the test database, for arranging and asserting state."""
    conn = Database(initialized / ".inkwell.db").connect()
    initialize(conn)
    yield EntryStore(conn)
    conn.close()
