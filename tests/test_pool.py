"""Tests for the SQLite connection pool."""
import threading

import pytest
from sqlalchemy import text

from promptpad_store.exceptions import ConfigurationError, ErrorCode, StorageError
from promptpad_store.storage.note_repository import NoteRepository
from promptpad_store.storage.pool import ConnectionPool


@pytest.fixture
def pool(db_path):
    pool = ConnectionPool(db_path, pool_size=2, pool_timeout=5, busy_timeout_ms=2500)
    yield pool
    pool.dispose()


class TestConnectionSettings:
    """Every pooled connection is configured the same way."""

    def test_pragmas_applied(self, pool):
        with pool.connection() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
            assert conn.execute(text("PRAGMA journal_mode")).scalar() == "wal"
            assert conn.execute(text("PRAGMA busy_timeout")).scalar() == 2500
            # NORMAL
            assert conn.execute(text("PRAGMA synchronous")).scalar() == 1

    def test_creates_parent_directory(self, tmp_path):
        nested = tmp_path / "a" / "b" / "notes.sqlite3"
        pool = ConnectionPool(nested, pool_size=1)
        try:
            with pool.connection() as conn:
                conn.execute(text("SELECT 1"))
        finally:
            pool.dispose()
        assert nested.exists()

    def test_repr_and_status(self, pool):
        assert "size=2" in repr(pool)
        assert isinstance(pool.status(), str)


class TestTransactions:
    """Tests for scoped transactions."""

    def test_commit_on_success(self, pool):
        with pool.transaction() as conn:
            conn.execute(text("CREATE TABLE t (x INTEGER)"))
            conn.execute(text("INSERT INTO t VALUES (1)"))
        with pool.connection() as conn:
            assert conn.execute(text("SELECT COUNT(*) FROM t")).scalar() == 1

    def test_rollback_on_error_includes_ddl(self, pool):
        with pytest.raises(RuntimeError):
            with pool.transaction() as conn:
                conn.execute(text("CREATE TABLE t (x INTEGER)"))
                conn.execute(text("INSERT INTO t VALUES (1)"))
                raise RuntimeError("boom")

        with pool.connection() as conn:
            exists = conn.execute(
                text("SELECT COUNT(*) FROM sqlite_master WHERE name = 't'")
            ).scalar()
        assert exists == 0

    def test_deferred_transaction(self, pool):
        with pool.transaction(immediate=False) as conn:
            assert conn.execute(text("SELECT 1")).scalar() == 1


class TestPoolLimits:
    """Tests for acquisition limits and failures."""

    def test_exhausted_pool_times_out(self, db_path):
        pool = ConnectionPool(db_path, pool_size=1, pool_timeout=0.1)
        try:
            with pool.connection():
                with pytest.raises(StorageError) as exc_info:
                    with pool.connection("second"):
                        pass
            assert exc_info.value.code == ErrorCode.STORAGE_CONNECTION_FAILED
            assert exc_info.value.details["operation"] == "second"
        finally:
            pool.dispose()

    def test_waiting_caller_gets_released_connection(self, db_path):
        pool = ConnectionPool(db_path, pool_size=1, pool_timeout=5)
        acquired = threading.Event()
        release = threading.Event()
        errors = []

        def holder():
            try:
                with pool.connection():
                    acquired.set()
                    release.wait(5)
            except Exception as e:
                errors.append(e)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            assert acquired.wait(5)
            threading.Timer(0.2, release.set).start()
            with pool.connection() as conn:
                assert conn.execute(text("SELECT 1")).scalar() == 1
        finally:
            release.set()
            thread.join(5)
            pool.dispose()
        assert errors == []

    def test_unopenable_path(self, tmp_path):
        # A directory cannot be opened as a database file
        pool = ConnectionPool(tmp_path, pool_size=1)
        try:
            with pytest.raises(StorageError) as exc_info:
                with pool.connection("open"):
                    pass
            assert exc_info.value.code == ErrorCode.STORAGE_CONNECTION_FAILED
        finally:
            pool.dispose()

    @pytest.mark.parametrize("pool_size", [0, -1])
    def test_pool_must_be_bounded(self, db_path, pool_size):
        with pytest.raises(ConfigurationError) as exc_info:
            ConnectionPool(db_path, pool_size=pool_size)
        assert exc_info.value.code == ErrorCode.CONFIG_INVALID
        assert exc_info.value.details["config_key"] == "pool_size"

    def test_negative_timeout_rejected(self, db_path):
        with pytest.raises(ConfigurationError):
            ConnectionPool(db_path, pool_size=1, pool_timeout=-1)

    def test_open_rejects_unbounded_pool(self, db_path):
        with pytest.raises(ConfigurationError):
            NoteRepository.open(db_path, pool_size=0, pool_timeout=1)
        assert not db_path.exists()

    def test_checkouts_never_exceed_pool_size(self, db_path):
        pool = ConnectionPool(db_path, pool_size=2, pool_timeout=0.1)
        try:
            with pool.connection(), pool.connection():
                with pytest.raises(StorageError):
                    with pool.connection("third"):
                        pass
        finally:
            pool.dispose()
