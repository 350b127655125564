"""Repository for note storage and retrieval."""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from promptpad_store.config import config
from promptpad_store.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    NoteValidationError,
    StorageError,
)
from promptpad_store.models.db_models import (
    NOTE_COLUMNS,
    NOTE_META_COLUMNS,
    note_from_row,
    note_meta_from_row,
    select_list,
)
from promptpad_store.models.schema import (
    Note,
    NoteMeta,
    NoteType,
    generate_id,
    utc_timestamp,
    validate_note_type,
)
from promptpad_store.observability import traced
from promptpad_store.storage.fts_index import FtsIndex
from promptpad_store.storage.migrator import SchemaMigrator
from promptpad_store.storage.pool import ConnectionPool

logger = logging.getLogger(__name__)

_SELECT_NOTE = f"SELECT {select_list(NOTE_COLUMNS)} FROM notes WHERE id = :id"

_LIST_ORDER = "ORDER BY is_pinned DESC, updated_at DESC"


@contextmanager
def _storage_errors(
    message: str,
    operation: str,
    note_id: Optional[str] = None,
    code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
) -> Iterator[None]:
    """Wrap SQLAlchemy failures raised in the block as StorageError."""
    try:
        yield
    except SQLAlchemyError as e:
        raise StorageError(
            f"{message}: {e}",
            operation=operation,
            note_id=note_id,
            code=code,
            original_error=e,
        ) from e


class NoteRepository:
    """Notes persisted in a single SQLite file.

    All access goes through the connection pool handed to the constructor;
    the repository owns that pool and disposes it on ``close()``. Search is
    delegated to an FtsIndex sharing the same pool, whose contents are kept
    in step with the notes table by triggers rather than by this class.

    Mutations that match no row raise NoteNotFoundError: ids are always
    caller-supplied and expected to exist, so a zero-row update is never
    treated as a no-op. Concurrent updates of the same note are
    last-write-wins.

    Use ``NoteRepository.open(path)`` to get a repository over a migrated
    database.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self.pool = pool
        self._fts = FtsIndex(pool)

    @classmethod
    def open(
        cls,
        database_path: Union[str, Path],
        pool_size: Optional[int] = None,
        pool_timeout: Optional[float] = None,
        busy_timeout_ms: Optional[int] = None,
    ) -> "NoteRepository":
        """Open (creating if needed) and migrate the store at ``database_path``.

        Pool settings not given explicitly come from the global config.
        Migration is synchronous and completes before the repository is
        returned.

        Raises:
            MigrationError: If the schema cannot be brought up to date.
                The pool is disposed before the error propagates.
            StorageError: If the database file cannot be opened.
            ConfigurationError: If the pool settings are out of range.
        """
        pool = ConnectionPool(
            database_path,
            pool_size=pool_size if pool_size is not None else config.pool_size,
            pool_timeout=(
                pool_timeout if pool_timeout is not None else config.pool_timeout
            ),
            busy_timeout_ms=(
                busy_timeout_ms
                if busy_timeout_ms is not None
                else config.busy_timeout_ms
            ),
        )
        try:
            version = SchemaMigrator(pool).migrate()
        except Exception:
            pool.dispose()
            raise
        logger.info(
            f"NoteRepository opened: db={pool.database_path}, schema_version={version}"
        )
        return cls(pool)

    def close(self) -> None:
        """Release every pooled connection."""
        self.pool.dispose()

    def __enter__(self) -> "NoteRepository":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # =========================================================================
    # Note operations
    # =========================================================================

    @traced("note_create")
    def create(self, note_type: Union[str, NoteType]) -> Note:
        """Create an empty note of the given type and return it as stored.

        Raises:
            NoteValidationError: If ``note_type`` is not a known NoteType.
                Nothing is written.
        """
        validated = validate_note_type(note_type)
        note_id = generate_id()
        now = utc_timestamp()

        with _storage_errors(
            "failed to create note", "create", note_id, ErrorCode.STORAGE_WRITE_FAILED
        ):
            with self.pool.transaction("create") as conn:
                conn.execute(
                    text(
                        "INSERT INTO notes (id, note_type, created_at, updated_at) "
                        "VALUES (:id, :note_type, :now, :now)"
                    ),
                    {"id": note_id, "note_type": validated.value, "now": now},
                )
                row = conn.execute(text(_SELECT_NOTE), {"id": note_id}).one()

        logger.debug(f"Created {validated.value} note {note_id}")
        return note_from_row(row)

    @traced("note_get")
    def get(self, note_id: str) -> Note:
        """Get a note by id, whether or not it is trashed.

        Raises:
            NoteNotFoundError: If no note has this id.
        """
        with _storage_errors(f"failed to read note {note_id}", "get", note_id):
            with self.pool.connection("get") as conn:
                row = conn.execute(text(_SELECT_NOTE), {"id": note_id}).first()

        if row is None:
            raise NoteNotFoundError(note_id)
        return note_from_row(row)

    @traced("note_update")
    def update(
        self, note_id: str, title: str, body_json: str, body_text: str
    ) -> Note:
        """Overwrite the title and both body fields in one statement.

        ``body_text`` is the plain-text projection of ``body_json`` used for
        search; keeping the two consistent is the caller's job.

        Raises:
            NoteValidationError: If any content field is not a string.
            NoteNotFoundError: If no note has this id.
        """
        for field, value in (
            ("title", title),
            ("body_json", body_json),
            ("body_text", body_text),
        ):
            if not isinstance(value, str):
                raise NoteValidationError(
                    f"{field} must be a string", field=field, value=value
                )

        with _storage_errors(
            f"failed to update note {note_id}",
            "update",
            note_id,
            ErrorCode.STORAGE_WRITE_FAILED,
        ):
            with self.pool.transaction("update") as conn:
                result = conn.execute(
                    text(
                        "UPDATE notes "
                        "SET title = :title, body_json = :body_json, "
                        "body_text = :body_text, updated_at = :now "
                        "WHERE id = :id"
                    ),
                    {
                        "title": title,
                        "body_json": body_json,
                        "body_text": body_text,
                        "now": utc_timestamp(),
                        "id": note_id,
                    },
                )
                if result.rowcount == 0:
                    raise NoteNotFoundError(note_id)
                row = conn.execute(text(_SELECT_NOTE), {"id": note_id}).one()

        return note_from_row(row)

    @traced("note_delete")
    def delete(self, note_id: str) -> None:
        """Move a note to the trash (soft delete).

        Raises:
            NoteNotFoundError: If no note has this id.
        """
        self._set_flag(note_id, "is_trashed", True, "trash")

    @traced("note_restore")
    def restore(self, note_id: str) -> None:
        """Take a note back out of the trash.

        Raises:
            NoteNotFoundError: If no note has this id.
        """
        self._set_flag(note_id, "is_trashed", False, "restore")

    @traced("note_pin")
    def set_pinned(self, note_id: str, pinned: bool) -> None:
        """Pin or unpin a note.

        Raises:
            NoteNotFoundError: If no note has this id.
        """
        self._set_flag(note_id, "is_pinned", pinned, "pin" if pinned else "unpin")

    @traced("note_delete_permanent")
    def delete_permanent(self, note_id: str) -> None:
        """Remove a note row for good; the index entry goes with it.

        Raises:
            NoteNotFoundError: If no note has this id.
        """
        with _storage_errors(
            f"failed to permanently delete note {note_id}",
            "delete_permanent",
            note_id,
            ErrorCode.STORAGE_DELETE_FAILED,
        ):
            with self.pool.transaction("delete_permanent") as conn:
                result = conn.execute(
                    text("DELETE FROM notes WHERE id = :id"), {"id": note_id}
                )
                if result.rowcount == 0:
                    raise NoteNotFoundError(note_id)

        logger.info(f"Permanently deleted note {note_id}")

    @traced("note_list")
    def list(self, include_trashed: bool = False) -> List[Note]:
        """List notes, pinned first, then most recently updated first.

        Trashed notes are left out unless ``include_trashed`` is set.
        """
        sql = self._list_sql(NOTE_COLUMNS, include_trashed)
        with _storage_errors("failed to list notes", "list"):
            with self.pool.connection("list") as conn:
                rows = conn.execute(text(sql)).fetchall()
        return [note_from_row(row) for row in rows]

    @traced("note_list_meta")
    def list_meta(self, include_trashed: bool = False) -> List[NoteMeta]:
        """Like ``list`` but returns summaries without body fields."""
        sql = self._list_sql(NOTE_META_COLUMNS, include_trashed)
        with _storage_errors("failed to list notes", "list_meta"):
            with self.pool.connection("list_meta") as conn:
                rows = conn.execute(text(sql)).fetchall()
        return [note_meta_from_row(row) for row in rows]

    # =========================================================================
    # Search
    # =========================================================================

    @traced("note_search")
    def search(self, query: str) -> List[Note]:
        """Full-text search over titles and body text.

        A blank query returns the same result as ``list(False)``. Otherwise
        trashed notes are excluded and results are ordered pinned first,
        then by relevance, then most recently updated.

        Raises:
            SearchError: If the query is malformed or the index unreadable.
        """
        if not query.strip():
            return self.list(include_trashed=False)
        return self._fts.search(query)

    @traced("note_search_meta")
    def search_meta(self, query: str) -> List[NoteMeta]:
        """Like ``search`` but returns summaries without body fields."""
        if not query.strip():
            return self.list_meta(include_trashed=False)
        return self._fts.search_meta(query)

    @traced("note_reindex")
    def reindex(self) -> None:
        """Rebuild the full-text index from the current note rows.

        Raises:
            SearchError: If the rebuild fails.
        """
        self._fts.rebuild()

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def check_health(self) -> Dict[str, Any]:
        """Check SQLite and FTS5 integrity.

        Returns:
            Dict with keys:
                - healthy: True when both integrity checks pass
                - sqlite_ok: result of PRAGMA integrity_check
                - fts_ok: result of the FTS5 integrity-check command
                - note_count: number of note rows
                - schema_version: highest applied migration
                - pool: connection pool occupancy
                - issues: descriptions of failed checks
        """
        issues: List[str] = []
        with _storage_errors("failed to run health check", "check_health"):
            with self.pool.connection("check_health") as conn:
                integrity = conn.execute(text("PRAGMA integrity_check")).scalar()
                sqlite_ok = integrity == "ok"
                if not sqlite_ok:
                    issues.append(f"SQLite integrity check failed: {integrity}")

                note_count = conn.execute(text("SELECT COUNT(*) FROM notes")).scalar()
                schema_version = SchemaMigrator.current_version(conn)

                try:
                    conn.execute(
                        text("INSERT INTO notes_fts(notes_fts) VALUES('integrity-check')")
                    )
                    fts_ok = True
                except SQLAlchemyError as e:
                    issues.append(f"FTS5 integrity check failed: {e}")
                    fts_ok = False

        if issues:
            logger.warning(f"Database health check found issues: {issues}")

        return {
            "healthy": sqlite_ok and fts_ok,
            "sqlite_ok": sqlite_ok,
            "fts_ok": fts_ok,
            "note_count": note_count,
            "schema_version": schema_version,
            "pool": self.pool.status(),
            "issues": issues,
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def _set_flag(self, note_id: str, column: str, value: bool, operation: str) -> None:
        """Set a boolean column on one note and advance its updated_at."""
        # column is always one of our own literals, never caller input
        sql = f"UPDATE notes SET {column} = :value, updated_at = :now WHERE id = :id"
        with _storage_errors(
            f"failed to {operation} note {note_id}",
            operation,
            note_id,
            ErrorCode.STORAGE_WRITE_FAILED,
        ):
            with self.pool.transaction(operation) as conn:
                result = conn.execute(
                    text(sql),
                    {"value": 1 if value else 0, "now": utc_timestamp(), "id": note_id},
                )
                if result.rowcount == 0:
                    raise NoteNotFoundError(note_id)

    @staticmethod
    def _list_sql(columns, include_trashed: bool) -> str:
        where = "" if include_trashed else "WHERE is_trashed = 0 "
        return f"SELECT {select_list(columns)} FROM notes {where}{_LIST_ORDER}"
