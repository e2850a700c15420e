"""Unit tests for structlog configuration."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from kudu_sink.config.models import LoggingConfig
from kudu_sink.observability.logs import configure_logging


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.setLevel(logging.WARNING)


class TestConfigureLogging:
    def test_sets_root_level(self):
        configure_logging(LoggingConfig(level="debug"))
        assert logging.getLogger().level == logging.DEBUG

    def test_json_output(self, capsys: pytest.CaptureFixture[str]):
        configure_logging(LoggingConfig(json_output=True))
        structlog.get_logger("test").info("kudu_template.flushed", rows=3)
        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "kudu_template.flushed"
        assert record["rows"] == 3
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_level_filters_debug(self, capsys: pytest.CaptureFixture[str]):
        configure_logging(LoggingConfig(level="INFO", json_output=True))
        structlog.get_logger("test").debug("coercion.column_not_in_schema")
        assert "column_not_in_schema" not in capsys.readouterr().err
