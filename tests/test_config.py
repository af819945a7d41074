"""Tests for configuration loading."""

import os

import pytest
import yaml

from agent_viz.config import (
    DEFAULTS,
    ENV_MAPPINGS,
    deep_merge,
    get_approval_config,
    get_database_url,
    get_legacy_state_file,
    get_tracker_config,
    get_value,
    load_config,
)


@pytest.fixture
def clean_env(monkeypatch):
    for var in ENV_MAPPINGS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


class TestLoadConfig:
    """Test config precedence: env vars > config.yaml > DEFAULTS."""

    def test_missing_file_gives_defaults(self, tmp_path, clean_env):
        config = load_config(tmp_path / "missing.yaml")
        assert config == DEFAULTS

    def test_yaml_overrides_defaults(self, tmp_path, clean_env):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"server": {"port": 9000}, "approval": {"enabled": True}}))

        config = load_config(str(path))

        assert config["server"]["port"] == 9000
        assert config["server"]["host"] == "127.0.0.1"
        assert config["approval"]["enabled"] is True
        assert config["approval"]["max_wait_seconds"] == 55

    def test_empty_yaml(self, tmp_path, clean_env):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == DEFAULTS

    def test_defaults_not_mutated(self, tmp_path, clean_env):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"hooks": {"agent_tools": ["Task", "Agent"]}}))
        load_config(path)
        assert DEFAULTS["hooks"]["agent_tools"] == ["Task"]

    def test_env_overrides(self, tmp_path, clean_env):
        clean_env.setenv("AGENT_VIZ_PORT", "4000")
        clean_env.setenv("AGENT_VIZ_APPROVAL_ENABLED", "yes")
        clean_env.setenv("AGENT_VIZ_BOSS_MODEL", "sonnet")

        config = load_config(tmp_path / "missing.yaml")

        assert config["server"]["port"] == 4000
        assert config["approval"]["enabled"] is True
        assert config["controller"]["model"] == "sonnet"

    def test_port_wins_over_prefixed_port(self, tmp_path, clean_env):
        clean_env.setenv("AGENT_VIZ_PORT", "4000")
        clean_env.setenv("PORT", "5000")
        assert load_config(tmp_path / "missing.yaml")["server"]["port"] == 5000


class TestHelpers:

    def test_deep_merge(self):
        merged = deep_merge({"a": {"b": 1, "c": 2}}, {"a": {"c": 3}, "d": 4})
        assert merged == {"a": {"b": 1, "c": 3}, "d": 4}

    def test_get_value(self):
        config = {"a": {"b": {"c": 1}}}
        assert get_value(config, "a", "b", "c") == 1
        assert get_value(config, "a", "x", default="fallback") == "fallback"

    def test_database_url(self):
        assert get_database_url({"database": {"path": ":memory:"}}) == "sqlite://"
        assert get_database_url({"database": {"path": "/tmp/a.db"}}) == "sqlite:////tmp/a.db"

    def test_database_url_expands_home(self):
        url = get_database_url({"database": {"path": "~/agents.db"}})
        assert url == f"sqlite:///{os.path.expanduser('~/agents.db')}"

    def test_legacy_state_file(self):
        assert get_legacy_state_file({}) == os.path.expanduser("~/.agent-visualization-state.json")


class TestSectionGetters:
    """Test the typed section getters."""

    def test_tracker_config_defaults(self):
        tracker = get_tracker_config(DEFAULTS)
        assert tracker["agent_tools"] == ("Task",)
        assert tracker["retention_seconds"] == 1800
        assert tracker["stale_agent_seconds"] == 300
        assert tracker["auto_reset_seconds"] == 60
        assert tracker["max_messages"] == 200

    def test_tracker_config_from_empty(self):
        assert get_tracker_config({}) == get_tracker_config(DEFAULTS)

    def test_approval_config(self):
        approval = get_approval_config({"approval": {"enabled": True, "max_wait_seconds": 10}})
        assert approval == {
            "enabled": True,
            "decision_retention_seconds": 300,
            "pending_expiry_seconds": 90,
            "max_wait_seconds": 10,
        }
