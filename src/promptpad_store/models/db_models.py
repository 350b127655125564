"""Row-level mapping between the notes table and the domain models.

The column lists are spelled out so that a schema change which drops or
renames a column fails loudly in ``note_from_row`` instead of silently
producing a half-populated Note.
"""
from typing import Any, Mapping, Tuple

from promptpad_store.models.schema import Note, NoteMeta, NoteType

NOTE_COLUMNS: Tuple[str, ...] = (
    "id",
    "title",
    "body_json",
    "body_text",
    "note_type",
    "meta_json",
    "created_at",
    "updated_at",
    "is_pinned",
    "is_trashed",
)

NOTE_META_COLUMNS: Tuple[str, ...] = (
    "id",
    "title",
    "note_type",
    "created_at",
    "updated_at",
    "is_pinned",
    "is_trashed",
)


def select_list(columns: Tuple[str, ...], alias: str = "") -> str:
    """Render a column tuple as a SELECT list, optionally table-qualified."""
    prefix = f"{alias}." if alias else ""
    return ", ".join(f"{prefix}{column}" for column in columns)


def _mapping(row: Any) -> Mapping[str, Any]:
    # SQLAlchemy Row exposes a read-only mapping view; plain dicts pass through
    return getattr(row, "_mapping", row)


def note_from_row(row: Any) -> Note:
    """Convert a notes row selected with NOTE_COLUMNS into a Note."""
    data = _mapping(row)
    return Note(
        id=data["id"],
        title=data["title"],
        body_json=data["body_json"],
        body_text=data["body_text"],
        note_type=NoteType(data["note_type"]),
        meta_json=data["meta_json"],
        created_at=data["created_at"],
        updated_at=data["updated_at"],
        is_pinned=bool(data["is_pinned"]),
        is_trashed=bool(data["is_trashed"]),
    )


def note_meta_from_row(row: Any) -> NoteMeta:
    """Convert a notes row selected with NOTE_META_COLUMNS into a NoteMeta."""
    data = _mapping(row)
    return NoteMeta(
        id=data["id"],
        title=data["title"],
        note_type=NoteType(data["note_type"]),
        created_at=data["created_at"],
        updated_at=data["updated_at"],
        is_pinned=bool(data["is_pinned"]),
        is_trashed=bool(data["is_trashed"]),
    )
