"""Tests for config loading."""
from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from agentic_coder.config import DEFAULT_CONFIG, CoderConfig, get_config, load_config
from agentic_coder.config.schema import MCPServerConfig, ModelConfig


def _minimal_model() -> ModelConfig:
    return ModelConfig(base_url="http://localhost:11434/v1", model="test-model")


def test_get_config_default(monkeypatch):
    monkeypatch.delenv("CODER_CONFIG_PATH", raising=False)
    monkeypatch.delenv("CODER_WORKSPACE_DIR", raising=False)
    cfg = get_config()
    assert cfg is DEFAULT_CONFIG
    assert cfg.model.backend == "openai"
    assert cfg.default_mode == "code"
    assert cfg.checkpoints.enabled


def test_get_config_from_file(monkeypatch, tmp_path):
    cfg_file = tmp_path / "coder.json"
    cfg_file.write_text(json.dumps({
        "model": {"base_url": "http://127.0.0.1:9000/v1", "model": "my-model", "temperature": 0.2},
        "default_mode": "architect",
        "terminal": {"output_line_limit": 50},
    }), encoding="utf-8")
    monkeypatch.setenv("CODER_CONFIG_PATH", str(cfg_file))
    monkeypatch.delenv("CODER_WORKSPACE_DIR", raising=False)

    cfg = load_config()
    assert cfg.model.model == "my-model"
    assert cfg.model.temperature == 0.2
    assert cfg.default_mode == "architect"
    assert cfg.terminal.output_line_limit == 50
    assert cfg.diff.fuzzy_threshold == 1.0


def test_legacy_models_mapping_is_accepted(monkeypatch, tmp_path):
    cfg_file = tmp_path / "coder.json"
    cfg_file.write_text(json.dumps({
        "models": {"fast": {"base_url": "http://localhost:8000/v1", "model": "first"}},
    }), encoding="utf-8")
    monkeypatch.setenv("CODER_CONFIG_PATH", str(cfg_file))
    assert load_config().model.model == "first"


def test_missing_file_falls_back_to_default(monkeypatch, tmp_path):
    monkeypatch.setenv("CODER_CONFIG_PATH", str(tmp_path / "absent.json"))
    monkeypatch.delenv("CODER_WORKSPACE_DIR", raising=False)
    assert load_config() is DEFAULT_CONFIG


def test_workspace_env_overrides_file(monkeypatch, tmp_path):
    monkeypatch.delenv("CODER_CONFIG_PATH", raising=False)
    monkeypatch.setenv("CODER_WORKSPACE_DIR", str(tmp_path))
    cfg = load_config()
    assert cfg.workspace_dir == str(tmp_path)
    assert DEFAULT_CONFIG.workspace_dir is None


def test_load_config_is_cached(monkeypatch):
    monkeypatch.delenv("CODER_CONFIG_PATH", raising=False)
    assert load_config() is load_config()


def test_load_config_cache_clear_forces_reload(monkeypatch, tmp_path):
    cfg_file = tmp_path / "cfg.json"
    cfg_file.write_text(json.dumps({"model": {"base_url": "http://localhost:11434/v1", "model": "m1"}}))
    monkeypatch.setenv("CODER_CONFIG_PATH", str(cfg_file))
    first = load_config()
    assert first.model.model == "m1"

    cfg_file.write_text(json.dumps({"model": {"base_url": "http://localhost:11434/v1", "model": "m2"}}))
    assert load_config().model.model == "m1"

    load_config.cache_clear()
    second = load_config()
    assert second.model.model == "m2"
    assert first is not second


def test_duplicate_mcp_server_names_rejected():
    with pytest.raises(ValidationError, match="Duplicate MCP server names"):
        CoderConfig(
            model=_minimal_model(),
            mcp_servers=[
                MCPServerConfig(name="fs", command="npx"),
                MCPServerConfig(name="fs", command="uvx"),
            ],
        )


def test_mcp_transport_requires_its_fields():
    with pytest.raises(ValidationError, match="requires 'command'"):
        MCPServerConfig(name="fs")
    with pytest.raises(ValidationError, match="requires 'url'"):
        MCPServerConfig(name="remote", transport="sse")
    assert MCPServerConfig(name="remote", transport="sse", url="http://localhost:9000/sse").url


def test_model_config_requires_endpoint_and_model():
    with pytest.raises(ValidationError):
        ModelConfig(model="x")
    assert _minimal_model().api_key == ""
