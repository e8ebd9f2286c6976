"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging


class TestJSONFormatter:
    def test_json_output(self):
        from src.logging_config import JSONFormatter

        formatter = JSONFormatter()
        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="",
            lineno=0,
            msg="Hello %s",
            args=("world",),
            exc_info=None,
        )
        record.cycle_id = "abc123"

        output = formatter.format(record)
        data = json.loads(output)

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["msg"] == "Hello world"
        assert data["cycle_id"] == "abc123"
        assert "ts" in data

    def test_json_without_cycle_id(self):
        from src.logging_config import JSONFormatter

        formatter = JSONFormatter()
        record = logging.LogRecord(
            name="test",
            level=logging.WARNING,
            pathname="",
            lineno=0,
            msg="no cycle",
            args=(),
            exc_info=None,
        )

        output = formatter.format(record)
        data = json.loads(output)
        assert data["cycle_id"] == ""
        assert data["level"] == "WARNING"


class TestCycleAdapter:
    def test_attaches_cycle_id(self, caplog):
        from src.logging_config import CycleAdapter

        log = CycleAdapter(logging.getLogger("test.cycle"), {"cycle_id": "c0ffee"})
        with caplog.at_level(logging.INFO, logger="test.cycle"):
            log.info("pass started")

        assert caplog.records[-1].cycle_id == "c0ffee"

    def test_new_cycle_ids_unique(self):
        from src.logging_config import new_cycle_id

        ids = {new_cycle_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(i) == 12 for i in ids)


class TestSetupLogging:
    def test_setup_returns_cycle_id(self, tmp_path):
        from src.logging_config import setup_logging

        cycle_id = setup_logging(log_dir=tmp_path)
        assert len(cycle_id) == 12
        assert cycle_id.isalnum()

        # Reset logging
        logging.getLogger().handlers.clear()

    def test_creates_log_dir(self, tmp_path):
        from src.logging_config import setup_logging

        log_dir = tmp_path / "nested" / "logs"
        setup_logging(log_dir=log_dir)
        assert log_dir.exists()
        assert (log_dir / "controller.log").exists()

        # Reset logging
        logging.getLogger().handlers.clear()

    def test_structured_env(self, tmp_path, monkeypatch):
        from src.logging_config import JSONFormatter, setup_logging

        monkeypatch.setenv("STRUCTURED_LOGGING", "true")
        setup_logging(log_dir=tmp_path)
        formatters = [h.formatter for h in logging.getLogger().handlers]
        assert any(isinstance(f, JSONFormatter) for f in formatters)

        # Reset logging
        logging.getLogger().handlers.clear()
