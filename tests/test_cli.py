"""Tests for the ``python -m sqlinsight`` entry point."""

from __future__ import annotations

import json
import logging

import pytest

import sqlinsight.__main__ as cli

from conftest import ScriptedInvoker, analysis_json, chat_response


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


@pytest.fixture
def invoker(monkeypatch) -> ScriptedInvoker:
    scripted = ScriptedInvoker(chat_response(analysis_json(issues=[], vulnerabilities=[], violations=[])))
    monkeypatch.setattr(cli.ChatCompletionsClient, "from_settings", lambda settings: scripted)
    return scripted


class TestCommandLine:
    def test_prints_analysis_json(self, invoker, capsys):
        exit_code = cli.main(["SELECT 1", "--variant", "postgresql", "--skip", "security", "--log-level", "WARNING"])

        payload = json.loads(capsys.readouterr().out)
        assert exit_code == 0
        assert payload["state"] == "done"
        assert payload["data"]["security"] is None
        assert payload["data"]["performance"]["score"] == 80
        assert payload["metadata"]["variant"] == "postgresql"
        assert len(invoker.calls) == 2

    def test_installs_logging(self, invoker, capsys):
        cli.main(["SELECT 1", "--log-level", "DEBUG"])
        capsys.readouterr()
        assert logging.getLogger().level == logging.DEBUG

    def test_every_dimension_skipped(self, invoker, capsys):
        argv = ["SELECT 1", "--skip", "performance", "--skip", "security", "--skip", "standards"]
        exit_code = cli.main(argv)

        payload = json.loads(capsys.readouterr().out)
        assert exit_code == 1
        assert payload["state"] == "error_terminal"
        assert invoker.calls == []
