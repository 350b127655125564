"""Bounded connection pool over the single SQLite database file."""
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.pool import QueuePool

from promptpad_store.config import DEFAULT_POOL_SIZE
from promptpad_store.exceptions import ConfigurationError, ErrorCode, StorageError

logger = logging.getLogger(__name__)

# Execution option read by the "begin" listener to pick the BEGIN flavour
BEGIN_MODE_OPTION = "promptpad_begin"


class ConnectionPool:
    """The only gateway to the backing SQLite file.

    Wraps a SQLAlchemy engine using a QueuePool capped at ``pool_size``
    connections with no overflow, so acquisition blocks (up to
    ``pool_timeout`` seconds) once every connection is checked out.

    Every physical connection is configured on connect:
    - pysqlite's implicit transaction handling is disabled and the pool
      emits its own BEGIN, which keeps DDL inside our transactions
    - foreign key enforcement
    - WAL journal with NORMAL synchronous mode
    - a busy timeout so concurrent writers wait instead of failing

    Args:
        database_path: Path of the SQLite database file. The parent
            directory is created if missing.
        pool_size: Maximum number of open connections.
        pool_timeout: Seconds to wait for a free connection.
        busy_timeout_ms: SQLite busy handler timeout in milliseconds.

    Raises:
        ConfigurationError: If pool_size is below 1 or a timeout is negative.
        StorageError: If the parent directory cannot be created.
    """

    def __init__(
        self,
        database_path: Union[str, Path],
        pool_size: int = DEFAULT_POOL_SIZE,
        pool_timeout: float = 30.0,
        busy_timeout_ms: int = 5000,
    ) -> None:
        # QueuePool reads pool_size=0 as "no limit"
        if pool_size < 1:
            raise ConfigurationError(
                f"pool_size must be >= 1, got {pool_size}", config_key="pool_size"
            )
        if pool_timeout < 0 or busy_timeout_ms < 0:
            raise ConfigurationError(
                "pool_timeout and busy_timeout_ms must be >= 0",
                config_key="pool_timeout" if pool_timeout < 0 else "busy_timeout_ms",
            )

        self.database_path = Path(database_path)
        self.pool_size = pool_size
        self._busy_timeout_ms = int(busy_timeout_ms)

        try:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"failed to create database directory {self.database_path.parent}",
                operation="open",
                code=ErrorCode.STORAGE_CONNECTION_FAILED,
                original_error=e,
            ) from e

        self.engine: Engine = create_engine(
            f"sqlite:///{self.database_path}",
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=pool_timeout,
            pool_pre_ping=True,
        )
        event.listen(self.engine, "connect", self._configure_connection)
        event.listen(self.engine, "begin", self._begin)

        logger.info(
            f"Connection pool ready: db={self.database_path}, "
            f"pool_size={pool_size}, pool_timeout={pool_timeout}s"
        )

    def _configure_connection(self, dbapi_connection, connection_record) -> None:
        # Must run before anything else touches the connection
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
        finally:
            cursor.close()

    @staticmethod
    def _begin(conn: Connection) -> None:
        conn.exec_driver_sql(conn.get_execution_options().get(BEGIN_MODE_OPTION, "BEGIN"))

    @contextmanager
    def connection(self, operation: str = "acquire") -> Iterator[Connection]:
        """Check out a connection for the duration of the block.

        Statements executed without an explicit transaction run inside a
        deferred transaction that is rolled back when the block exits.

        Raises:
            StorageError: If no connection frees up within the pool timeout
                or the database file cannot be opened.
        """
        try:
            conn = self.engine.connect()
        except PoolTimeoutError as e:
            raise StorageError(
                f"timed out waiting for a database connection during {operation}",
                operation=operation,
                code=ErrorCode.STORAGE_CONNECTION_FAILED,
                original_error=e,
            ) from e
        except (SQLAlchemyError, sqlite3.Error) as e:
            raise StorageError(
                f"failed to get sqlite connection for {operation}: {e}",
                operation=operation,
                code=ErrorCode.STORAGE_CONNECTION_FAILED,
                original_error=e,
            ) from e

        with conn:
            yield conn

    @contextmanager
    def transaction(
        self, operation: str = "transaction", immediate: bool = True
    ) -> Iterator[Connection]:
        """Check out a connection and run the block in one transaction.

        Commits when the block exits normally and rolls back on any
        exception, which is then re-raised unchanged.

        Args:
            operation: Name used in error messages and logs.
            immediate: Take the write lock up front with BEGIN IMMEDIATE.
        """
        with self.connection(operation) as conn:
            if immediate:
                conn.execution_options(**{BEGIN_MODE_OPTION: "BEGIN IMMEDIATE"})
            with conn.begin():
                yield conn

    def status(self) -> str:
        """Human-readable pool occupancy, for diagnostics."""
        return self.engine.pool.status()

    def dispose(self) -> None:
        """Close every pooled connection."""
        self.engine.dispose()
        logger.debug(f"Connection pool disposed: db={self.database_path}")

    def __repr__(self) -> str:
        return f"<ConnectionPool(db='{self.database_path}', size={self.pool_size})>"
