"""Tests for the observability module.

Tests for metrics collection, logging configuration, and operation tracing.
"""
import logging

import pytest

from promptpad_store.exceptions import NoteNotFoundError
from promptpad_store.observability import (
    LOG_FILE_NAME,
    ROOT_LOGGER_NAME,
    MetricsCollector,
    configure_logging,
    metrics,
    timed_operation,
    traced,
)


@pytest.fixture
def clean_logger():
    """Restore the package logger's handlers after the test."""
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield root_logger
    for handler in root_logger.handlers:
        if handler not in handlers:
            handler.close()
    root_logger.handlers = handlers
    root_logger.setLevel(level)


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_records_success_and_failure(self):
        collector = MetricsCollector()
        collector.record_operation("op", 10.0, True)
        collector.record_operation("op", 30.0, False, "bad")

        data = collector.get_metrics()["op"]
        assert data["count"] == 2
        assert data["success_count"] == 1
        assert data["error_count"] == 1
        assert data["avg_duration_ms"] == 20.0
        assert data["min_duration_ms"] == 10.0
        assert data["max_duration_ms"] == 30.0
        assert data["last_error"] == "bad"

    def test_summary_and_reset(self):
        collector = MetricsCollector()
        collector.record_operation("a", 1.0, True)
        collector.record_operation("b", 1.0, True)

        summary = collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["overall_success_rate"] == 1.0
        assert set(summary["operations_tracked"]) == {"a", "b"}

        collector.reset()
        assert collector.get_metrics() == {}


class TestTracing:
    """Tests for timed_operation and the traced decorator."""

    def test_timed_operation_records_result(self):
        with timed_operation("custom_op", query="x") as op:
            op["result_count"] = 3

        assert metrics.get_metrics()["custom_op"]["success_count"] == 1

    def test_timed_operation_records_error(self):
        with pytest.raises(ValueError):
            with timed_operation("failing_op"):
                raise ValueError("nope")

        data = metrics.get_metrics()["failing_op"]
        assert data["error_count"] == 1
        assert data["last_error"] == "nope"

    def test_repository_operations_are_traced(self, note_repository):
        note = note_repository.create("prompt")
        note_repository.get(note.id)
        with pytest.raises(NoteNotFoundError):
            note_repository.get("missing")

        data = metrics.get_metrics()
        assert data["note_create"]["count"] == 1
        assert data["note_get"]["success_count"] == 1
        assert data["note_get"]["error_count"] == 1

    def test_traced_preserves_metadata(self):
        @traced("decorated")
        def sample(self, note_id):
            """Sample docstring."""
            return [note_id]

        assert sample.__name__ == "sample"
        assert sample.__doc__ == "Sample docstring."
        assert sample(None, "n-1") == ["n-1"]
        assert metrics.get_metrics()["decorated"]["count"] == 1


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_console_only(self, clean_logger):
        assert configure_logging(level=logging.WARNING, console=True) is None
        assert clean_logger.level == logging.WARNING

    def test_file_logging(self, clean_logger, tmp_path):
        log_file = configure_logging(
            level=logging.INFO, log_dir=tmp_path / "logs", console=False
        )

        assert log_file == tmp_path / "logs" / LOG_FILE_NAME
        logging.getLogger(f"{ROOT_LOGGER_NAME}.test").info("written to file")
        for handler in clean_logger.handlers:
            handler.flush()
        assert "written to file" in log_file.read_text(encoding="utf-8")
