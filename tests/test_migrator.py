"""Tests for versioned schema migrations."""

import pytest
from sqlalchemy import text

from promptpad_store.exceptions import ErrorCode, MigrationError
from promptpad_store.storage.migrator import (
    Migration,
    SchemaMigrator,
    load_migrations,
    split_sql_statements,
)
from promptpad_store.storage.note_repository import NoteRepository
from promptpad_store.storage.pool import ConnectionPool


def _table_names(pool):
    with pool.connection() as conn:
        rows = conn.execute(
            text("SELECT name FROM sqlite_master WHERE type IN ('table', 'index')")
        ).fetchall()
    return {row[0] for row in rows}


@pytest.fixture
def pool(db_path):
    pool = ConnectionPool(db_path, pool_size=2, pool_timeout=5)
    yield pool
    pool.dispose()


class TestLoadMigrations:
    """Tests for discovering migration scripts."""

    def test_shipped_migrations_are_ordered(self):
        migrations = load_migrations()
        versions = [m.version for m in migrations]
        assert versions == sorted(versions)
        assert versions[:2] == [1, 2]
        assert migrations[0].name == "initial"

    def test_rejects_badly_named_file(self, tmp_path):
        (tmp_path / "001_initial.sql").write_text("SELECT 1;")
        (tmp_path / "second.sql").write_text("SELECT 1;")
        with pytest.raises(MigrationError) as exc_info:
            load_migrations(tmp_path)
        assert exc_info.value.code == ErrorCode.MIGRATION_INVALID

    def test_rejects_duplicate_versions(self, tmp_path):
        (tmp_path / "001_initial.sql").write_text("SELECT 1;")
        (tmp_path / "001_again.sql").write_text("SELECT 1;")
        with pytest.raises(MigrationError) as exc_info:
            load_migrations(tmp_path)
        assert exc_info.value.code == ErrorCode.MIGRATION_INVALID
        assert exc_info.value.details["version"] == 1


class TestSplitStatements:
    """Tests for splitting migration scripts into statements."""

    def test_trigger_body_kept_whole(self):
        script = """
-- leading comment
CREATE TABLE a (x TEXT);

CREATE TRIGGER a_ai AFTER INSERT ON a BEGIN
    INSERT INTO a (x) VALUES ('a;b');
    SELECT 1;
END;
CREATE INDEX idx_a ON a (x);
"""
        statements = split_sql_statements(script)
        assert len(statements) == 3
        assert statements[1].startswith("CREATE TRIGGER")
        assert statements[1].endswith("END;")
        assert "'a;b'" in statements[1]

    def test_unterminated_statement_rejected(self):
        with pytest.raises(ValueError):
            split_sql_statements("CREATE TABLE a (x TEXT)")

    def test_empty_script(self):
        assert split_sql_statements("\n-- nothing here\n\n") == []


class TestSchemaMigrator:
    """Tests for bringing a database file up to date."""

    def test_fresh_database_reaches_latest(self, pool):
        migrator = SchemaMigrator(pool)
        assert migrator.get_version() == 0

        version = migrator.migrate()

        assert version == migrator.latest_version
        assert migrator.get_version() == migrator.latest_version
        names = _table_names(pool)
        assert {"notes", "notes_fts", "schema_version", "idx_notes_listing"} <= names

    def test_migrate_is_idempotent(self, pool):
        migrator = SchemaMigrator(pool)
        migrator.migrate()
        assert migrator.migrate() == migrator.latest_version

        with pool.connection() as conn:
            count = conn.execute(text("SELECT COUNT(*) FROM schema_version")).scalar()
        assert count == len(migrator.migrations)

    def test_upgrade_from_older_version_keeps_data(self, pool):
        first_only = SchemaMigrator(pool, migrations=load_migrations()[:1])
        assert first_only.migrate() == 1
        assert "idx_notes_listing" not in _table_names(pool)

        with pool.transaction() as conn:
            conn.execute(
                text(
                    "INSERT INTO notes (id, note_type, created_at, updated_at) "
                    "VALUES ('kept', 'freeform', '2024-01-01T00:00:00.000000Z', "
                    "'2024-01-01T00:00:00.000000Z')"
                )
            )

        full = SchemaMigrator(pool)
        assert full.migrate() == full.latest_version
        assert "idx_notes_listing" in _table_names(pool)
        with pool.connection() as conn:
            ids = conn.execute(text("SELECT id FROM notes")).scalars().all()
        assert ids == ["kept"]

    def test_failed_migration_leaves_database_untouched(self, pool):
        migrations = [
            load_migrations()[0],
            Migration(2, "broken", "CREATE TABLE extra (x TEXT);\nNOT VALID SQL;\n"),
        ]

        with pytest.raises(MigrationError) as exc_info:
            SchemaMigrator(pool, migrations=migrations).migrate()

        assert exc_info.value.code == ErrorCode.MIGRATION_FAILED
        assert exc_info.value.details["version"] == 2
        names = _table_names(pool)
        assert "notes" not in names
        assert "extra" not in names
        assert SchemaMigrator(pool).get_version() == 0

    def test_newer_schema_rejected(self, pool):
        migrator = SchemaMigrator(pool)
        migrator.migrate()
        with pool.transaction() as conn:
            conn.execute(
                text(
                    "INSERT INTO schema_version (version, name, applied_at) "
                    "VALUES (99, 'future', '2030-01-01T00:00:00.000000Z')"
                )
            )

        with pytest.raises(MigrationError) as exc_info:
            migrator.migrate()
        assert exc_info.value.code == ErrorCode.SCHEMA_TOO_NEW
        assert exc_info.value.details["version"] == 99


class TestOpenRunsMigrations:
    """Tests for migration on repository open."""

    def test_reopen_preserves_notes(self, db_path):
        with NoteRepository.open(db_path) as repo:
            note = repo.create("prompt")
        with NoteRepository.open(db_path) as repo:
            assert repo.get(note.id).id == note.id
            assert repo.check_health()["schema_version"] == 2

    def test_open_rejects_newer_schema(self, db_path):
        with NoteRepository.open(db_path) as repo:
            with repo.pool.transaction() as conn:
                conn.execute(
                    text(
                        "INSERT INTO schema_version (version, name, applied_at) "
                        "VALUES (99, 'future', '2030-01-01T00:00:00.000000Z')"
                    )
                )

        with pytest.raises(MigrationError) as exc_info:
            NoteRepository.open(db_path)
        assert exc_info.value.code == ErrorCode.SCHEMA_TOO_NEW
