"""Quarry database layer."""

from quarry.db.connection import Database
from quarry.db.migrations import MIGRATIONS, run_migrations
from quarry.db.repository import DocumentStore
from quarry.db.schema import initialize
from quarry.db.vectors import cosine_similarity, decode_embedding, encode_embedding

__all__ = [
    "Database",
    "DocumentStore",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "cosine_similarity",
    "decode_embedding",
    "encode_embedding",
]
