"""Tests for configuration and logging setup."""

from __future__ import annotations

import io
import json
import logging

import pytest
from pydantic import ValidationError

from sqlinsight.core.config import Settings
from sqlinsight.core.logging import JSONFormatter, setup_logging
from sqlinsight.exceptions import ModelInvocationError, SqlInsightError


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SQLINSIGHT_TOOL_MAX_RETRIES", raising=False)
        settings = Settings(_env_file=None)
        assert settings.tool_max_retries == 2
        assert settings.retry_confidence_threshold == 0.5
        assert settings.parallel_execution is True
        assert settings.parse_cache_enabled is True

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SQLINSIGHT_TOOL_MAX_RETRIES", "4")
        monkeypatch.setenv("SQLINSIGHT_PARALLEL_EXECUTION", "false")
        settings = Settings(_env_file=None)
        assert settings.tool_max_retries == 4
        assert settings.parallel_execution is False

    def test_rejects_invalid_values(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, tool_timeout_seconds=0)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, retry_confidence_threshold=1.5)


class TestLogging:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("sqlinsight.test", logging.INFO, __file__, 1, "parsed %s", ("x",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter_includes_extras(self):
        line = JSONFormatter().format(self._record(dimension="security", strategy="direct"))
        payload = json.loads(line)
        assert payload["message"] == "parsed x"
        assert payload["level"] == "INFO"
        assert payload["dimension"] == "security"
        assert payload["strategy"] == "direct"
        assert "request_id" not in payload

    def test_setup_logging_installs_single_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level="DEBUG", json_output=True)
            setup_logging(level="DEBUG", json_output=True)
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.DEBUG
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


class TestLoggingStream:
    def test_records_go_to_given_stream(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        buffer = io.StringIO()
        try:
            setup_logging(level="INFO", json_output=True, stream=buffer)
            logging.getLogger("sqlinsight.test").info("hello", extra={"request_id": "r1"})
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
        payload = json.loads(buffer.getvalue().strip())
        assert payload["message"] == "hello"
        assert payload["request_id"] == "r1"


def test_exception_hierarchy():
    err = ModelInvocationError("rate limited", status_code=429, error_code="429")
    assert isinstance(err, SqlInsightError)
    assert err.status_code == 429
