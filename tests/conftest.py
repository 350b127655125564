"""Common test fixtures for the Promptpad store."""

import pytest

from promptpad_store.config import config
from promptpad_store.observability import metrics
from promptpad_store.storage.note_repository import NoteRepository


@pytest.fixture
def db_path(tmp_path):
    """Path of a database file that does not exist yet."""
    return tmp_path / "notes.sqlite3"


@pytest.fixture
def test_config(tmp_path, db_path, monkeypatch):
    """Point the global config at a temporary database (auto-restored)."""
    monkeypatch.setattr(config, "base_dir", tmp_path)
    monkeypatch.setattr(config, "database_path", db_path)
    monkeypatch.setattr(config, "log_dir", None)
    yield config


@pytest.fixture
def note_repository(db_path):
    """A repository over a freshly migrated database."""
    repository = NoteRepository.open(db_path, pool_size=4, pool_timeout=5)
    yield repository
    repository.close()


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep metrics from leaking between tests."""
    metrics.reset()
    yield
    metrics.reset()
