"""Data models for the Promptpad store."""

import datetime
import threading
import time
import uuid
from datetime import timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from promptpad_store.exceptions import ErrorCode, NoteValidationError

DEFAULT_TITLE = "Untitled"
DEFAULT_BODY_JSON = "{}"
DEFAULT_BODY_TEXT = ""

# Fixed-width so that lexical order of stored timestamps is chronological
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=timezone.utc)


class NoteType(str, Enum):
    """Kinds of notes the editor knows how to render."""

    FREEFORM = "freeform"
    PROMPT = "prompt"


def validate_note_type(value: Union[str, NoteType]) -> NoteType:
    """Coerce a caller-supplied note type, rejecting unknown values.

    Raises:
        NoteValidationError: If the value is not one of the NoteType members.
    """
    try:
        return NoteType(value)
    except ValueError:
        allowed = ", ".join(f"'{t.value}'" for t in NoteType)
        raise NoteValidationError(
            f"invalid note_type '{value}', expected one of {allowed}",
            field="note_type",
            value=value,
            code=ErrorCode.INVALID_NOTE_TYPE,
        ) from None


def generate_id() -> str:
    """Generate an opaque, globally unique note id."""
    return str(uuid.uuid4())


# Process-wide monotonic clock state
_clock_lock = threading.Lock()
_last_timestamp_us = 0


def utc_timestamp() -> str:
    """Return the current UTC time as a stored timestamp string.

    Successive calls within one process are strictly increasing, even when
    the wall clock has not advanced (or has stepped backwards) since the
    previous call, so ``updated_at`` always moves forward on a mutation.
    """
    global _last_timestamp_us

    with _clock_lock:
        now_us = time.time_ns() // 1000
        if now_us <= _last_timestamp_us:
            now_us = _last_timestamp_us + 1
        _last_timestamp_us = now_us

    moment = _EPOCH + datetime.timedelta(microseconds=now_us)
    return moment.strftime(TIMESTAMP_FORMAT)


class _CamelModel(BaseModel):
    """Base model serialised with camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Note(_CamelModel):
    """A note as stored, including its body."""

    id: str
    title: str = DEFAULT_TITLE
    body_json: str = DEFAULT_BODY_JSON
    body_text: str = DEFAULT_BODY_TEXT
    note_type: NoteType
    # Reserved; no store operation reads or writes it
    meta_json: Optional[str] = None
    created_at: datetime.datetime
    updated_at: datetime.datetime
    is_pinned: bool = False
    is_trashed: bool = False


class NoteMeta(_CamelModel):
    """Listing summary of a note without its body fields."""

    id: str
    title: str
    note_type: NoteType
    created_at: datetime.datetime
    updated_at: datetime.datetime
    is_pinned: bool
    is_trashed: bool
