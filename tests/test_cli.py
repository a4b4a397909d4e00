"""CLI commands via Typer's CliRunner, and reply parsing."""
from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from agentic_coder.domain import AskResponse, HistoryItem
from agentic_coder.infrastructure.workspace.task_storage import FileTaskStorage
from agentic_coder.interfaces.cli import app, build_services, parse_answer

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    def _write(**data):
        data.setdefault("model", {"base_url": "http://llm.test/v1", "model": "m"})
        data.setdefault("storage_dir", str(tmp_path / "store"))
        path = tmp_path / "coder.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        monkeypatch.setenv("CODER_CONFIG_PATH", str(path))
        return data
    return _write


def test_modes_lists_builtins_and_default(config_file):
    config_file(default_mode="ask")
    result = runner.invoke(app, ["modes"])
    assert result.exit_code == 0
    assert "ask (default)" in result.output
    assert "architect" in result.output


def test_history_empty(config_file):
    config_file()
    result = runner.invoke(app, ["history"])
    assert result.exit_code == 0
    assert "No tasks found" in result.output


def test_history_lists_most_recent_first(config_file, tmp_path):
    config_file()
    FileTaskStorage(str(tmp_path / "store")).save_history([
        HistoryItem(id="aaaaaaaaaaaa1111", number=1, ts=1_000, task="old task"),
        HistoryItem(id="bbbbbbbbbbbb2222", number=2, ts=2_000, task="new task", tokens_in=5, tokens_out=1),
    ])
    result = runner.invoke(app, ["history"])
    assert result.exit_code == 0
    assert result.output.index("bbbbbbbbbbbb") < result.output.index("aaaaaaaaaaaa")
    assert "5/1" in result.output

    limited = runner.invoke(app, ["history", "--limit", "1"])
    assert "aaaaaaaaaaaa" not in limited.output


def test_run_rejects_unknown_mode(config_file):
    config_file()
    result = runner.invoke(app, ["run", "do things", "--mode", "wizard"])
    assert result.exit_code == 1
    assert "Unknown mode" in result.output


def test_resume_unknown_task(config_file):
    config_file()
    result = runner.invoke(app, ["resume", "deadbeef"])
    assert result.exit_code == 1
    assert "No task matching" in result.output


def test_mcp_without_servers(config_file):
    config_file()
    result = runner.invoke(app, ["mcp"])
    assert result.exit_code == 0
    assert "No MCP servers configured." in result.output


@pytest.mark.parametrize("ask_type, reply, expected", [
    ("tool", "", (AskResponse.YES, None)),
    ("tool", "Y", (AskResponse.YES, None)),
    ("command", "no", (AskResponse.NO, None)),
    ("tool", "use tabs instead", (AskResponse.MESSAGE, "use tabs instead")),
    ("followup", "", (AskResponse.YES, None)),
    ("followup", "  src/app.py ", (AskResponse.MESSAGE, "src/app.py")),
    ("completion_result", "n", (AskResponse.MESSAGE, "n")),
])
def test_parse_answer(ask_type, reply, expected):
    assert parse_answer(ask_type, reply) == expected


def test_build_services_wires_config(tmp_path, config_file):
    from agentic_coder.config import load_config

    config_file(workspace_dir=str(tmp_path), diff={"enabled": False}, checkpoints={"enabled": True})
    services = build_services(load_config(), checkpoints=False)
    assert services.diff_strategy is None
    assert services.checkpoint_factory is None
    assert services.mcp_hub is None
    assert services.access_policy.cwd == str(tmp_path)
