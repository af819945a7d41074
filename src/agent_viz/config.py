"""Configuration loader with YAML and environment variable support."""

import copy
import os
from pathlib import Path
from typing import Any

import yaml


def _to_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


# Default configuration values
DEFAULTS = {
    "server": {
        "host": "127.0.0.1",
        "port": 1217,
        "debug": False,
    },
    "logging": {
        "level": "INFO",
        "file": "logs/app.log",
        "max_bytes": 10_000_000,
        "backup_count": 5,
    },
    "database": {
        "path": "~/.agent-visualization.db",
        "legacy_state_file": "~/.agent-visualization-state.json",
        "async_writes": True,
    },
    "hooks": {
        "agent_tools": ["Task"],
        "task_output_tool": "TaskOutput",
    },
    "controller": {
        "model": "opus",
        "active_window_seconds": 30,
    },
    "auto_reset": {
        "delay_seconds": 60,
        "batch_grace_seconds": 60,
    },
    "cleanup": {
        "enabled": True,
        "interval_seconds": 60,
        "retention_minutes": 30,
        "stale_agent_seconds": 300,
    },
    "messages": {
        "max_messages": 200,
    },
    "snapshot": {
        "max_agents": 200,
    },
    "sse": {
        "keepalive_seconds": 20,
        "max_connections": 100,
        "connection_timeout_seconds": 120,
        "retry_after_seconds": 5,
    },
    "approval": {
        "enabled": False,
        "decision_retention_seconds": 300,
        "pending_expiry_seconds": 90,
        "max_wait_seconds": 55,
    },
}

# Environment variable mappings
# Maps env var name to (config_section, config_key, type_converter).
# Applied in order, so PORT wins over AGENT_VIZ_PORT.
ENV_MAPPINGS = {
    "AGENT_VIZ_HOST": ("server", "host", str),
    "AGENT_VIZ_PORT": ("server", "port", int),
    "PORT": ("server", "port", int),
    "AGENT_VIZ_LOG_LEVEL": ("logging", "level", str),
    "AGENT_VIZ_DB_PATH": ("database", "path", str),
    "AGENT_VIZ_STATE_FILE": ("database", "legacy_state_file", str),
    "AGENT_VIZ_BOSS_MODEL": ("controller", "model", str),
    "AGENT_VIZ_AUTO_RESET_SECONDS": ("auto_reset", "delay_seconds", int),
    "AGENT_VIZ_CLEANUP_MINUTES": ("cleanup", "retention_minutes", int),
    "AGENT_VIZ_APPROVAL_ENABLED": ("approval", "enabled", _to_bool),
}


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_yaml_config(config_path: Path) -> dict:
    """Load configuration from YAML file."""
    if not config_path.exists():
        return {}

    with open(config_path, "r") as f:
        content = yaml.safe_load(f)
        return content if content else {}


def apply_env_overrides(config: dict) -> dict:
    """Apply environment variable overrides to configuration."""
    result = config.copy()

    for env_var, (section, key, converter) in ENV_MAPPINGS.items():
        value = os.environ.get(env_var)
        if value is not None:
            result[section] = dict(result.get(section, {}))
            result[section][key] = converter(value)

    return result


def load_config(config_path: str | Path = "config.yaml") -> dict:
    """Load config: env vars > config.yaml > DEFAULTS."""
    if isinstance(config_path, str):
        config_path = Path(config_path)

    config = copy.deepcopy(DEFAULTS)

    yaml_config = load_yaml_config(config_path)
    config = deep_merge(config, yaml_config)

    config = apply_env_overrides(config)

    return config


def get_value(config: dict, *keys: str, default: Any = None) -> Any:
    """Get a nested configuration value by key path."""
    result = config
    for key in keys:
        if isinstance(result, dict) and key in result:
            result = result[key]
        else:
            return default
    return result


def get_database_path(config: dict) -> str:
    """Get the expanded path of the SQLite database file."""
    path = get_value(config, "database", "path", default="~/.agent-visualization.db")
    if path == ":memory:":
        return path
    return os.path.expanduser(path)


def get_database_url(config: dict) -> str:
    """Build the SQLAlchemy URL for the SQLite mirror."""
    path = get_database_path(config)
    if path == ":memory:":
        return "sqlite://"
    return f"sqlite:///{path}"


def get_legacy_state_file(config: dict) -> str:
    """Get the expanded path of the pre-SQLite JSON state file."""
    path = get_value(
        config, "database", "legacy_state_file",
        default="~/.agent-visualization-state.json",
    )
    return os.path.expanduser(path)


def get_tracker_config(config: dict) -> dict:
    """Get the timing and sizing settings used by the agent tracker."""
    return {
        "agent_tools": tuple(get_value(config, "hooks", "agent_tools", default=["Task"])),
        "task_output_tool": get_value(config, "hooks", "task_output_tool", default="TaskOutput"),
        "controller_model": get_value(config, "controller", "model", default="opus"),
        "controller_active_seconds": get_value(
            config, "controller", "active_window_seconds", default=30
        ),
        "auto_reset_seconds": get_value(config, "auto_reset", "delay_seconds", default=60),
        "batch_grace_seconds": get_value(config, "auto_reset", "batch_grace_seconds", default=60),
        "stale_agent_seconds": get_value(config, "cleanup", "stale_agent_seconds", default=300),
        "retention_seconds": get_value(config, "cleanup", "retention_minutes", default=30) * 60,
        "max_messages": get_value(config, "messages", "max_messages", default=200),
        "max_agents": get_value(config, "snapshot", "max_agents", default=200),
    }


def get_approval_config(config: dict) -> dict:
    """Get approval gate configuration with defaults."""
    return {
        "enabled": get_value(config, "approval", "enabled", default=False),
        "decision_retention_seconds": get_value(
            config, "approval", "decision_retention_seconds", default=300
        ),
        "pending_expiry_seconds": get_value(
            config, "approval", "pending_expiry_seconds", default=90
        ),
        "max_wait_seconds": get_value(config, "approval", "max_wait_seconds", default=55),
    }
