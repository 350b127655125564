"""Storage layer for the Promptpad store."""

from promptpad_store.storage.fts_index import FtsIndex
from promptpad_store.storage.migrator import Migration, SchemaMigrator, load_migrations
from promptpad_store.storage.note_repository import NoteRepository
from promptpad_store.storage.pool import ConnectionPool

__all__ = [
    "ConnectionPool",
    "FtsIndex",
    "Migration",
    "NoteRepository",
    "SchemaMigrator",
    "load_migrations",
]
