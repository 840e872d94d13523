"""Inkwell database layer."""

from inkwell.db.connection import Database, transaction
from inkwell.db.migrations import MIGRATIONS, run_migrations
from inkwell.db.repository import EntryStore
from inkwell.db.schema import initialize
from inkwell.db.vectors import VectorMatch, VectorStore, cosine_similarity

__all__ = [
    "Database",
    "transaction",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "EntryStore",
    "VectorStore",
    "VectorMatch",
    "cosine_similarity",
]
