"""Forward-only schema migrations driven by versioned SQL scripts."""
import logging
import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from promptpad_store.exceptions import ErrorCode, MigrationError, PromptpadError
from promptpad_store.models.schema import utc_timestamp
from promptpad_store.storage.pool import ConnectionPool

logger = logging.getLogger(__name__)

SQL_DIR = Path(__file__).parent / "sql"

# e.g. 001_initial.sql -> (1, "initial")
_MIGRATION_FILE_PATTERN = re.compile(r"^(\d+)_([a-z0-9_]+)\.sql$")


@dataclass(frozen=True)
class Migration:
    """One schema step: a version number and the SQL script that reaches it."""

    version: int
    name: str
    sql: str


def load_migrations(directory: Path = SQL_DIR) -> List[Migration]:
    """Load every ``NNN_name.sql`` script in ``directory``, ordered by version.

    Raises:
        MigrationError: If a file name does not follow the pattern or two
            scripts claim the same version.
    """
    migrations: List[Migration] = []
    seen = {}
    for path in sorted(directory.glob("*.sql")):
        match = _MIGRATION_FILE_PATTERN.match(path.name)
        if not match:
            raise MigrationError(
                f"migration file name '{path.name}' must look like 001_name.sql",
                code=ErrorCode.MIGRATION_INVALID,
            )
        version = int(match.group(1))
        if version in seen:
            raise MigrationError(
                f"migrations '{seen[version]}' and '{path.name}' share version {version}",
                version=version,
                code=ErrorCode.MIGRATION_INVALID,
            )
        seen[version] = path.name
        migrations.append(
            Migration(version, match.group(2), path.read_text(encoding="utf-8"))
        )
    return sorted(migrations, key=lambda m: m.version)


def split_sql_statements(script: str) -> List[str]:
    """Split a SQL script into individually executable statements.

    Statement boundaries come from ``sqlite3.complete_statement`` so that
    semicolons inside trigger bodies and string literals do not split a
    statement. Blank lines and ``--`` comment lines between statements are
    dropped.

    Raises:
        ValueError: If the script ends with an unterminated statement.
    """
    statements: List[str] = []
    buffer = ""
    for line in script.splitlines(keepends=True):
        stripped = line.strip()
        if not buffer and (not stripped or stripped.startswith("--")):
            continue
        buffer += line
        if sqlite3.complete_statement(buffer):
            statements.append(buffer.strip())
            buffer = ""
    if buffer.strip():
        raise ValueError(f"unterminated SQL statement: {buffer.strip()[:80]}")
    return statements


class SchemaMigrator:
    """Brings a database file up to the newest known schema version.

    The ``schema_version`` table is the ledger of applied migrations; a
    database without it is treated as version 0. All pending migrations run
    in a single BEGIN IMMEDIATE transaction, so a failure in any of them
    leaves the file exactly as it was.

    Args:
        pool: Connection pool for the database file.
        migrations: Migrations to apply. Defaults to the scripts shipped in
            the package's ``sql`` directory.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        migrations: Optional[Sequence[Migration]] = None,
    ) -> None:
        self._pool = pool
        self.migrations: List[Migration] = sorted(
            migrations if migrations is not None else load_migrations(),
            key=lambda m: m.version,
        )

    @property
    def latest_version(self) -> int:
        return self.migrations[-1].version if self.migrations else 0

    @staticmethod
    def current_version(conn: Connection) -> int:
        """Read the highest applied version on ``conn`` (0 if uninitialized)."""
        ledger_exists = conn.execute(
            text(
                "SELECT EXISTS("
                " SELECT 1 FROM sqlite_master"
                " WHERE type = 'table' AND name = 'schema_version')"
            )
        ).scalar()
        if not ledger_exists:
            return 0
        return conn.execute(
            text("SELECT COALESCE(MAX(version), 0) FROM schema_version")
        ).scalar()

    def get_version(self) -> int:
        """Read the schema version of the database file."""
        try:
            with self._pool.connection("schema_version") as conn:
                return self.current_version(conn)
        except SQLAlchemyError as e:
            raise MigrationError(
                f"failed to query schema_version: {e}", original_error=e
            ) from e

    def migrate(self) -> int:
        """Apply every pending migration and return the resulting version.

        Raises:
            MigrationError: If the database is newer than this code or any
                migration step fails. Nothing is committed in either case.
        """
        version: Optional[int] = None
        try:
            with self._pool.transaction("migrate") as conn:
                current = self.current_version(conn)
                if current > self.latest_version:
                    raise MigrationError(
                        f"database schema version {current} is newer than the "
                        f"latest supported version {self.latest_version}",
                        version=current,
                        code=ErrorCode.SCHEMA_TOO_NEW,
                    )

                pending = [m for m in self.migrations if m.version > current]
                if not pending:
                    logger.debug(f"Schema is up to date at version {current}")
                    return current

                for migration in pending:
                    version = migration.version
                    self._apply(conn, migration)
        except PromptpadError:
            raise
        except (SQLAlchemyError, ValueError) as e:
            raise MigrationError(
                f"failed to apply migration version {version}: {e}"
                if version is not None
                else f"failed to start migration transaction: {e}",
                version=version,
                original_error=e,
            ) from e

        logger.info(
            f"Schema migrated from version {current} to {self.latest_version} "
            f"({len(pending)} migration(s) applied)"
        )
        return self.latest_version

    @staticmethod
    def _apply(conn: Connection, migration: Migration) -> None:
        logger.info(f"Applying migration {migration.version:03d}_{migration.name}")
        for statement in split_sql_statements(migration.sql):
            conn.exec_driver_sql(statement)
        conn.execute(
            text(
                "INSERT INTO schema_version (version, name, applied_at) "
                "VALUES (:version, :name, :applied_at)"
            ),
            {
                "version": migration.version,
                "name": migration.name,
                "applied_at": utc_timestamp(),
            },
        )
