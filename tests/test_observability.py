"""Tests for the observability module.

Tests for metrics collection, logging configuration, error sanitization and
the tracing decorators.
"""
import json
import logging
import time
from pathlib import Path

import pytest

from sparklog_sync.observability import (
    CATCHUP_HIT,
    CATCHUP_MISS,
    DRAFT_RETIRED,
    MetricsCollector,
    _sanitize_error_message,
    atraced,
    configure_logging,
    record_event,
    timed_operation,
    traced,
)


class TestErrorMessageSanitization:
    """Tests for error message sanitization."""

    def test_sanitize_none_returns_none(self):
        """Sanitizing None should return None."""
        assert _sanitize_error_message(None) is None

    def test_sanitize_simple_message(self):
        assert _sanitize_error_message("Simple error") == "Simple error"

    def test_sanitize_removes_home_directory(self):
        """Home directory paths should be replaced with ~."""
        home = str(Path.home())
        result = _sanitize_error_message(f"{home}/secret/file.txt: Permission denied")
        assert home not in result
        assert "~" in result
        assert "secret/file.txt" in result

    def test_sanitize_removes_newlines(self):
        result = _sanitize_error_message("Line 1\nLine 2\rLine 3")
        assert result == "Line 1 Line 2 Line 3"

    def test_sanitize_truncates_long_messages(self):
        """Long messages should be truncated with ellipsis."""
        result = _sanitize_error_message("a" * 300)
        assert len(result) == 200  # default max length
        assert result.endswith("...")

    def test_sanitize_custom_max_length(self):
        result = _sanitize_error_message("a" * 100, max_length=50)
        assert len(result) == 50
        assert result.endswith("...")

    def test_sanitize_collapses_whitespace(self):
        assert _sanitize_error_message("  word1    word2  ") == "word1 word2"


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    @pytest.fixture
    def collector(self, tmp_path):
        return MetricsCollector(
            metrics_file=tmp_path / "metrics.json",
            auto_save_interval=0,  # Disable auto-save
        )

    def test_record_successful_operation(self, collector):
        collector.record_operation("save_draft", 100.0, True)

        metrics = collector.get_metrics()
        assert metrics["save_draft"]["count"] == 1
        assert metrics["save_draft"]["success_count"] == 1
        assert metrics["save_draft"]["error_count"] == 0
        assert metrics["save_draft"]["avg_duration_ms"] == 100.0

    def test_record_failed_operation(self, collector):
        collector.record_operation("remote_update", 50.0, False, "Version conflict")

        metrics = collector.get_metrics()
        assert metrics["remote_update"]["error_count"] == 1
        assert metrics["remote_update"]["last_error"] == "Version conflict"
        assert metrics["remote_update"]["last_error_time"] is not None

    def test_multiple_operations_aggregated(self, collector):
        collector.record_operation("op", 100.0, True)
        collector.record_operation("op", 200.0, True)
        collector.record_operation("op", 300.0, False, "Error")

        metrics = collector.get_metrics()["op"]
        assert metrics["count"] == 3
        assert metrics["avg_duration_ms"] == 200.0
        assert metrics["min_duration_ms"] == 100.0
        assert metrics["max_duration_ms"] == 300.0

    def test_save_and_load_metrics(self, tmp_path):
        metrics_file = tmp_path / "metrics.json"
        first = MetricsCollector(metrics_file=metrics_file, auto_save_interval=0)
        first.record_operation("op1", 100.0, True)
        first.record_operation("op2", 200.0, False, "Error")
        first.increment(CATCHUP_HIT, 3)
        assert first.save_metrics()

        data = json.loads(metrics_file.read_text())
        assert set(data["operations"]) == {"op1", "op2"}
        assert data["events"] == {CATCHUP_HIT: 3}

        second = MetricsCollector(metrics_file=metrics_file, auto_save_interval=0)
        assert second.get_metrics()["op2"]["error_count"] == 1
        assert second.get_metrics()["op1"]["min_duration_ms"] == 100.0
        assert second.get_events() == {CATCHUP_HIT: 3}

    def test_auto_save_interval(self, tmp_path):
        metrics_file = tmp_path / "metrics.json"
        collector = MetricsCollector(metrics_file=metrics_file, auto_save_interval=2)
        collector.record_operation("op", 1.0, True)
        assert not metrics_file.exists()
        collector.record_operation("op", 1.0, True)
        assert metrics_file.exists()

    def test_corrupt_metrics_file_is_ignored(self, tmp_path):
        metrics_file = tmp_path / "metrics.json"
        metrics_file.write_text("{broken")
        collector = MetricsCollector(metrics_file=metrics_file)
        assert collector.get_metrics() == {}

    def test_events_and_reset(self, collector):
        collector.record_operation("op1", 100.0, True)
        collector.increment(DRAFT_RETIRED)
        collector.increment(DRAFT_RETIRED)
        collector.increment(CATCHUP_MISS, 4)

        assert collector.get_events() == {DRAFT_RETIRED: 2, CATCHUP_MISS: 4}

        collector.reset()
        assert collector.get_metrics() == {}
        assert collector.get_events() == {}

    def test_record_event_uses_global_collector(self, isolated_metrics):
        record_event(DRAFT_RETIRED)
        assert isolated_metrics.get_events() == {DRAFT_RETIRED: 1}


class TestTracing:
    """Tests for timed_operation and the tracing decorators."""

    def test_timed_operation_records_success(self, isolated_metrics):
        with timed_operation("sleepy") as op:
            time.sleep(0.01)
            op["result_count"] = 1

        metrics = isolated_metrics.get_metrics()["sleepy"]
        assert metrics["success_count"] == 1
        assert metrics["avg_duration_ms"] >= 10

    def test_timed_operation_records_failure(self, isolated_metrics):
        with pytest.raises(ValueError):
            with timed_operation("failing"):
                raise ValueError("Test error")

        metrics = isolated_metrics.get_metrics()["failing"]
        assert metrics["error_count"] == 1
        assert "Test error" in metrics["last_error"]

    def test_traced_decorator(self, isolated_metrics):
        @traced("lookup")
        def lookup(note_id):
            return [note_id]

        assert lookup(note_id="n1") == ["n1"]
        assert isolated_metrics.get_metrics()["lookup"]["count"] == 1

    @pytest.mark.anyio
    async def test_atraced_decorator_records_errors(self, isolated_metrics):
        @atraced("remote_call")
        async def remote_call(path):
            raise RuntimeError(f"failed {path}")

        with pytest.raises(RuntimeError):
            await remote_call(path="notes/a.md")
        assert isolated_metrics.get_metrics()["remote_call"]["error_count"] == 1


class TestConfigureLogging:
    """Tests for configure_logging function."""

    @pytest.fixture(autouse=True)
    def restore_handlers(self):
        logger = logging.getLogger("sparklog_sync")
        handlers, level = list(logger.handlers), logger.level
        yield
        for handler in logger.handlers:
            if handler not in handlers:
                handler.close()
        logger.handlers = handlers
        logger.setLevel(level)

    def test_creates_directory_and_returns_path(self, tmp_path):
        log_dir = tmp_path / "logs"
        assert configure_logging(log_dir=log_dir, console=False) == log_dir
        assert log_dir.is_dir()

    def test_sets_level(self, tmp_path):
        configure_logging(log_dir=tmp_path, level=logging.DEBUG, console=False)
        assert logging.getLogger("sparklog_sync").level == logging.DEBUG

    def test_module_loggers_write_to_file(self, tmp_path):
        configure_logging(log_dir=tmp_path, console=False)
        logging.getLogger("sparklog_sync.services.draft_log").info("draft saved")
        for handler in logging.getLogger("sparklog_sync").handlers:
            handler.flush()
        assert "draft saved" in (tmp_path / "sparklog-sync.log").read_text()
