"""Named command surface over the note repository.

Translates calls of the form ``(command_name, {camelCaseArgs})`` coming from
the host application into typed NoteRepository calls, and serialises the
results with camelCase field names. No business logic lives here.
"""
import logging
import uuid
from typing import Any, Callable, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from promptpad_store.exceptions import ErrorCode, PromptpadError, ValidationError
from promptpad_store.observability import metrics
from promptpad_store.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)


class _Args(BaseModel):
    """Base for command argument payloads (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


class NoArgs(_Args):
    pass


class NoteIdArgs(_Args):
    id: str


class NoteCreateArgs(_Args):
    note_type: str


class NoteUpdateArgs(_Args):
    id: str
    title: str
    body_json: str
    body_text: str


class NoteListArgs(_Args):
    include_trashed: bool = False


class NoteSearchArgs(_Args):
    query: str


class NotePinArgs(_Args):
    id: str
    pinned: bool


Handler = Callable[[NoteRepository, Any], Any]

COMMANDS: Dict[str, Tuple[Type[_Args], Handler]] = {
    "note_create": (NoteCreateArgs, lambda repo, a: repo.create(a.note_type)),
    "note_get": (NoteIdArgs, lambda repo, a: repo.get(a.id)),
    "note_update": (
        NoteUpdateArgs,
        lambda repo, a: repo.update(a.id, a.title, a.body_json, a.body_text),
    ),
    "note_delete": (NoteIdArgs, lambda repo, a: repo.delete(a.id)),
    "note_restore": (NoteIdArgs, lambda repo, a: repo.restore(a.id)),
    "note_delete_permanent": (NoteIdArgs, lambda repo, a: repo.delete_permanent(a.id)),
    "note_list": (NoteListArgs, lambda repo, a: repo.list(a.include_trashed)),
    "note_list_meta": (NoteListArgs, lambda repo, a: repo.list_meta(a.include_trashed)),
    "note_search": (NoteSearchArgs, lambda repo, a: repo.search(a.query)),
    "note_search_meta": (NoteSearchArgs, lambda repo, a: repo.search_meta(a.query)),
    "note_pin": (NotePinArgs, lambda repo, a: repo.set_pinned(a.id, a.pinned)),
    "note_reindex": (NoArgs, lambda repo, a: repo.reindex()),
    "store_health": (NoArgs, lambda repo, a: repo.check_health()),
    "store_metrics": (NoArgs, lambda repo, a: metrics_report()),
}


def metrics_report() -> Dict[str, Any]:
    """Per-operation timings and outcomes recorded in this process."""
    return {"summary": metrics.get_summary(), "operations": metrics.get_metrics()}


def serialize(result: Any) -> Any:
    """Convert repository results into JSON-ready values."""
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json", by_alias=True)
    if isinstance(result, list):
        return [serialize(item) for item in result]
    return result


class CommandRouter:
    """Dispatches named commands to a NoteRepository.

    Args:
        repository: An open repository; the router does not own it.
    """

    def __init__(self, repository: NoteRepository) -> None:
        self.repository = repository

    def invoke(self, command: str, args: Optional[Dict[str, Any]] = None) -> Any:
        """Run ``command`` with camelCase ``args`` and return the serialised result.

        Raises:
            ValidationError: If the command is unknown or its arguments are
                malformed.
            PromptpadError: Whatever the underlying repository call raises.
        """
        try:
            args_model, handler = COMMANDS[command]
        except KeyError:
            raise ValidationError(
                f"unknown command '{command}'",
                field="command",
                value=command,
                code=ErrorCode.UNKNOWN_COMMAND,
            ) from None

        try:
            parsed = args_model.model_validate(args or {})
        except PydanticValidationError as e:
            raise ValidationError(
                f"invalid arguments for {command}: {e.errors(include_url=False)}",
                field="args",
            ) from e

        return serialize(handler(self.repository, parsed))


def format_error(error: Exception) -> Dict[str, Any]:
    """Format a failure as a serialisable error payload.

    Store errors keep their code and details. Anything else is logged with
    a traceback and reported under a short reference id.
    """
    if isinstance(error, PromptpadError):
        logger.error(f"[{error.code.name}] {error.message}", extra={"error_details": error.details})
        return error.to_dict()

    error_id = str(uuid.uuid4())[:8]
    logger.error(f"Unexpected error [{error_id}]: {error}", exc_info=error)
    return {
        "error": error.__class__.__name__,
        "code": None,
        "code_name": "UNEXPECTED",
        "message": f"An unexpected error occurred (ref: {error_id})",
        "details": {},
    }
