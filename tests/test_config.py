"""Tests for agent configuration loading."""

import json

import pytest

from studysetup.config import (
    DEFAULT_CONFIG,
    ConfigError,
    load_agent_config,
    resilience_options,
)


class TestLoadAgentConfig:
    def test_defaults_without_file(self, monkeypatch):
        monkeypatch.delenv("STUDYSETUP_CONFIG", raising=False)
        config = load_agent_config()
        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_overrides_merged(self, tmp_path):
        path = tmp_path / "agent.json"
        path.write_text(json.dumps({"llm": {"model": "gpt-4o"}, "resilience": {"max_attempts": 5}}))
        config = load_agent_config(str(path))
        assert config["llm"]["model"] == "gpt-4o"
        assert config["llm"]["max_tokens"] == 500
        assert config["resilience"]["max_attempts"] == 5
        assert config["resilience"]["timeout_seconds"] == 120

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "agent.json"
        path.write_text(json.dumps({"interview": {"temperature": 0.2}}))
        monkeypatch.setenv("STUDYSETUP_CONFIG", str(path))
        assert load_agent_config()["interview"]["temperature"] == 0.2

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_agent_config(str(tmp_path / "nope.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "agent.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="invalid JSON"):
            load_agent_config(str(path))

    def test_non_object(self, tmp_path):
        path = tmp_path / "agent.json"
        path.write_text("[]")
        with pytest.raises(ConfigError, match="JSON object"):
            load_agent_config(str(path))

    def test_section_replaced_by_scalar(self, tmp_path):
        path = tmp_path / "agent.json"
        path.write_text(json.dumps({"resilience": 3}))
        with pytest.raises(ConfigError, match="resilience"):
            load_agent_config(str(path))


class TestResilienceOptions:
    def test_defaults(self):
        assert resilience_options(DEFAULT_CONFIG) == {
            "timeout": 120.0,
            "max_attempts": 3,
            "initial_delay": 1.0,
            "max_delay": 10.0,
            "jitter": 1.0,
        }
