"""FTS5 full-text search index over note titles and plain-text bodies.

The index is an external-content FTS5 table kept in sync with ``notes`` by
triggers created in the initial migration, so no write path has to update
it explicitly. This module only queries it and rebuilds it on demand.
"""
import logging
import re
from typing import Callable, List, Tuple, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import OperationalError as SQLAlchemyOperationalError
from sqlalchemy.exc import SQLAlchemyError

from promptpad_store.exceptions import ErrorCode, SearchError
from promptpad_store.models.db_models import (
    NOTE_COLUMNS,
    NOTE_META_COLUMNS,
    note_from_row,
    note_meta_from_row,
    select_list,
)
from promptpad_store.models.schema import Note, NoteMeta
from promptpad_store.storage.pool import ConnectionPool

logger = logging.getLogger(__name__)

T = TypeVar("T")

FTS5_KEYWORDS = {"AND", "OR", "NOT", "NEAR"}

# One query token: a phrase (optionally column-filtered, prefixed or grouped)
# or any other run of non-space characters
_QUERY_TOKEN = re.compile(r'\(*(?:(?:title|body_text):)?"[^"]*"\*?\)*|\S+')
_PHRASE = re.compile(r'^"[^"]*"\*?$')
_PREFIX_TERM = re.compile(r"^\w+\*$")
_COLUMN_FILTER = re.compile(r"\b(title|body_text):(.*)")

# sqlite messages that mean the MATCH expression itself is malformed
_INVALID_QUERY_MARKERS = ("fts5", "syntax error", "no such column", "unterminated string")

_SEARCH_SQL = """
    SELECT {columns}
    FROM notes_fts
    JOIN notes n ON n.doc_id = notes_fts.rowid
    WHERE notes_fts MATCH :query
      AND n.is_trashed = 0
    ORDER BY n.is_pinned DESC, bm25(notes_fts), n.updated_at DESC
"""


class FtsIndex:
    """Relevance-ranked search over the notes_fts index.

    Args:
        pool: Connection pool for the database file.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def search(self, query: str) -> List[Note]:
        """Match ``query`` against title and body text, returning full notes.

        Trashed notes are filtered out. Results are ordered pinned first,
        then by bm25 relevance, then most recently updated.

        Raises:
            SearchError: If the query is not valid FTS5 syntax or the
                index cannot be read.
        """
        return self._run(query, NOTE_COLUMNS, note_from_row)

    def search_meta(self, query: str) -> List[NoteMeta]:
        """Same as ``search`` but returns listing summaries."""
        return self._run(query, NOTE_META_COLUMNS, note_meta_from_row)

    def rebuild(self) -> None:
        """Rebuild the whole index from the current note rows.

        Repairs drift caused by writes that bypassed the triggers. Never
        touches the notes table, and running it twice is harmless.

        Raises:
            SearchError: If the rebuild fails.
        """
        try:
            with self._pool.transaction("reindex") as conn:
                conn.execute(text("INSERT INTO notes_fts(notes_fts) VALUES('rebuild')"))
        except SQLAlchemyError as e:
            raise SearchError(
                f"failed to rebuild FTS index: {e}",
                code=ErrorCode.INDEX_REBUILD_FAILED,
                original_error=e,
            ) from e
        logger.info("FTS5 index rebuilt")

    def _run(
        self,
        query: str,
        columns: Tuple[str, ...],
        row_mapper: Callable[..., T],
    ) -> List[T]:
        match_expr = self.build_match_expression(query)
        sql = text(_SEARCH_SQL.format(columns=select_list(columns, "n")))
        try:
            with self._pool.connection("search") as conn:
                rows = conn.execute(sql, {"query": match_expr}).fetchall()
        except SQLAlchemyOperationalError as e:
            message = str(e.orig) if e.orig is not None else str(e)
            if any(marker in message.lower() for marker in _INVALID_QUERY_MARKERS):
                raise SearchError(
                    f"invalid search query: {message}",
                    query=query,
                    code=ErrorCode.SEARCH_INVALID_QUERY,
                    original_error=e,
                ) from e
            raise SearchError(
                f"failed to run search query: {message}",
                query=query,
                original_error=e,
            ) from e
        except SQLAlchemyError as e:
            raise SearchError(
                f"failed to run search query: {e}", query=query, original_error=e
            ) from e

        logger.debug(f"FTS5 search returned {len(rows)} rows for query '{query[:50]}'")
        return [row_mapper(row) for row in rows]

    # ------------------------------------------------------------------
    # Query escaping helpers
    # ------------------------------------------------------------------

    @classmethod
    def build_match_expression(cls, query: str) -> str:
        """Turn user input into an FTS5 MATCH expression.

        Plain text is split on whitespace and every token is quoted, so the
        tokens are ANDed together and punctuation cannot act as an operator.

        Input that uses FTS5 syntax keeps its operators, balanced phrases,
        ``word*`` prefixes and ``title:``/``body_text:`` filters; any other
        token in it is quoted the same way.
        """
        cleaned = query.strip()
        if not cls._uses_fts_syntax(cleaned):
            return " ".join(cls._quote(token) for token in cleaned.split())
        return " ".join(
            cls._normalize_token(token) for token in _QUERY_TOKEN.findall(cleaned)
        )

    @staticmethod
    def _uses_fts_syntax(query: str) -> bool:
        """Auto-detect whether a query is written in FTS5 syntax."""
        words = query.split()
        if any(word in FTS5_KEYWORDS for word in words):
            return True
        if query.count('"') >= 2 and query.count('"') % 2 == 0:
            return True
        if re.search(r"\b\w+\*", query):
            return True
        if _COLUMN_FILTER.search(query):
            return True
        return False

    @classmethod
    def _normalize_token(cls, token: str) -> str:
        # Grouping parentheses stay outside the term
        rest = token.lstrip("(")
        opening = token[: len(token) - len(rest)]
        core = rest.rstrip(")")
        closing = rest[len(core):]
        if not core:
            return token
        return f"{opening}{cls._normalize_term(core)}{closing}"

    @classmethod
    def _normalize_term(cls, term: str) -> str:
        if term in FTS5_KEYWORDS or _PREFIX_TERM.match(term):
            return term
        if _PHRASE.match(term):
            return term
        column = _COLUMN_FILTER.match(term)
        if column and column.group(2):
            return f"{column.group(1)}:{cls._normalize_term(column.group(2))}"
        if len(term) > 1 and term.endswith("*") and term.rstrip("*"):
            # e-mail* -> "e-mail"*
            return cls._quote(term.rstrip("*")) + "*"
        return cls._quote(term)

    @staticmethod
    def _quote(token: str) -> str:
        """Quote a single token as an FTS5 string literal."""
        return '"' + token.replace('"', '""') + '"'
