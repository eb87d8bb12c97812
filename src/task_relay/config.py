"""Configuration loading from environment variables and .relay.json."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from task_relay.errors import ValidationError

logger = logging.getLogger(__name__)

PROJECT_CONFIG_FILENAME = ".relay.json"
CONFIG_KEYS = ("project", "agent", "poll_interval")


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".task_relay" / "relay.db")
    default_project: str | None = None
    agent_command: str | None = None
    poll_interval: float = 5.0
    max_attempts: int = 3
    busy_timeout: float = 10.0
    log_level: str = "WARNING"
    slack_bot_token: str | None = None
    slack_channel: str | None = None

    @classmethod
    def from_env(cls, cwd: Path | None = None) -> "Config":
        config = cls()

        local = load_project_config(cwd)
        if local:
            config.default_project = local.get("project")
            config.agent_command = local.get("agent")
            if interval := local.get("poll_interval"):
                try:
                    config.poll_interval = float(interval)
                except ValueError:
                    logger.warning("Ignoring invalid poll_interval %r in %s", interval, PROJECT_CONFIG_FILENAME)

        if db := os.environ.get("RELAY_DB_PATH"):
            config.db_path = Path(db)

        if project := os.environ.get("RELAY_PROJECT"):
            config.default_project = project

        if agent := os.environ.get("RELAY_AGENT_COMMAND"):
            config.agent_command = agent

        if interval := os.environ.get("RELAY_POLL_INTERVAL"):
            config.poll_interval = float(interval)

        if attempts := os.environ.get("RELAY_MAX_ATTEMPTS"):
            config.max_attempts = int(attempts)

        if timeout := os.environ.get("RELAY_BUSY_TIMEOUT"):
            config.busy_timeout = float(timeout)

        if level := os.environ.get("RELAY_LOG_LEVEL"):
            config.log_level = level.upper()

        config.slack_bot_token = os.environ.get("SLACK_BOT_TOKEN")
        config.slack_channel = os.environ.get("RELAY_SLACK_CHANNEL")

        return config


def load_project_config(cwd: Path | None = None) -> dict | None:
    """Read .relay.json from the given directory. Returns None if absent or invalid."""
    path = (cwd or Path.cwd()) / PROJECT_CONFIG_FILENAME
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError):
        logger.warning("Ignoring unreadable %s", path)
        return None
    if not isinstance(data, dict):
        return None
    return {
        k: v for k, v in data.items()
        if k in CONFIG_KEYS and isinstance(v, str)
    }


def save_project_config(values: dict, cwd: Path | None = None) -> Path:
    """Write .relay.json to the given directory."""
    path = (cwd or Path.cwd()) / PROJECT_CONFIG_FILENAME
    path.write_text(json.dumps(values, indent=2) + "\n")
    return path


def set_project_config_value(key: str, value: str, cwd: Path | None = None) -> Path:
    """Set one key in .relay.json, keeping the others."""
    if key not in CONFIG_KEYS:
        raise ValidationError(
            f"Unknown config key '{key}' (expected one of: {', '.join(CONFIG_KEYS)})", field="key"
        )
    if key == "poll_interval" and not _positive_number(value):
        raise ValidationError(
            f"poll_interval must be a positive number of seconds, got '{value}'", field="value"
        )
    values = load_project_config(cwd) or {}
    values[key] = value
    return save_project_config(values, cwd)


def get_config() -> Config:
    return Config.from_env()


def _positive_number(value: str) -> bool:
    try:
        return float(value) > 0
    except ValueError:
        return False
