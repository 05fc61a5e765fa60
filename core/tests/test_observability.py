"""
Tests for run-correlated logging and the configuration file helpers.
"""

import asyncio
import json
import logging

import pytest

from stageflow import config
from stageflow.config import EngineConfig, get_stageflow_config
from stageflow.observability import (
    bind_log_context,
    configure_logging,
    current_log_context,
    reset_log_context,
)
from stageflow.observability.logging import ConsoleLogFormatter, JsonLogFormatter


@pytest.fixture(autouse=True)
def clean_log_context():
    reset_log_context()
    yield
    reset_log_context()


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("stageflow.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogContext:
    def test_bind_merges_and_current_copies(self):
        bind_log_context(run_id="runs/a", pipeline="p")
        bind_log_context(node_id="plan")
        ctx = current_log_context()
        assert ctx == {"run_id": "runs/a", "pipeline": "p", "node_id": "plan"}
        ctx["node_id"] = "mutated"
        assert current_log_context()["node_id"] == "plan"

    @pytest.mark.asyncio
    async def test_tasks_do_not_leak_into_parent(self):
        bind_log_context(run_id="r", node_id="parent")

        async def branch():
            bind_log_context(node_id="child")
            return current_log_context()

        child_ctx = await asyncio.create_task(branch())
        assert child_ctx["node_id"] == "child"
        assert child_ctx["run_id"] == "r"
        assert current_log_context()["node_id"] == "parent"


class TestFormatters:
    def test_json_includes_context_and_extras(self):
        bind_log_context(run_id="r1", node_id="n1")
        line = JsonLogFormatter().format(_record("\x1b[32mretrying\x1b[0m", attempt=2))
        entry = json.loads(line)
        assert entry["message"] == "retrying"
        assert entry["level"] == "info"
        assert entry["run_id"] == "r1"
        assert entry["node_id"] == "n1"
        assert entry["attempt"] == 2

    def test_console_prefix(self):
        bind_log_context(run_id="runs/release-2024-06-01", node_id="deploy")
        line = ConsoleLogFormatter().format(_record("hello"))
        assert "[run:e-2024-06-01 | node:deploy] hello" in line

    def test_configure_logging_json(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            configure_logging(level="debug")
            assert root.level == logging.DEBUG
            assert isinstance(root.handlers[0].formatter, JsonLogFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


class TestConfig:
    def test_missing_file(self, tmp_path):
        assert get_stageflow_config(tmp_path / "nope.json") == {}

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "configuration.json"
        path.write_text("{broken", encoding="utf-8")
        assert get_stageflow_config(path) == {}

    def test_engine_config_from_file(self, tmp_path, monkeypatch):
        path = tmp_path / "configuration.json"
        path.write_text(
            json.dumps(
                {
                    "log_level": "debug",
                    "retry": {"initial_delay_ms": 50, "factor": 3, "jitter": False},
                    "parallel": {"max_parallel": 8},
                    "human": {"timeout_seconds": 120},
                }
            ),
            encoding="utf-8-sig",
        )
        monkeypatch.setattr(config, "STAGEFLOW_CONFIG_FILE", path)

        engine_config = EngineConfig()

        assert engine_config.initial_delay_ms == 50
        assert engine_config.backoff_factor == 3.0
        assert engine_config.max_delay_ms == 60_000
        assert engine_config.default_max_parallel == 8
        assert engine_config.human_timeout_seconds == 120.0
        assert engine_config.log_level == "DEBUG"

        backoff = engine_config.default_backoff()
        assert backoff.jitter is False
        assert backoff.delay_for_attempt(2) == 150

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config, "STAGEFLOW_CONFIG_FILE", tmp_path / "missing.json")
        engine_config = EngineConfig()
        assert engine_config.initial_delay_ms == 200
        assert engine_config.default_max_parallel == 4
        assert engine_config.human_timeout_seconds is None
        assert engine_config.log_level == "INFO"
