"""
Taskly Configuration

Loads settings from ~/.taskly/config.yaml with environment variable overrides.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional
import os
import logging

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".taskly"
CONFIG_FILE = CONFIG_DIR / "config.yaml"


@dataclass
class DatabaseConfig:
    """Database configuration settings."""

    type: str = "sqlite"  # "sqlite" or "postgres"
    sqlite_path: str = "~/.taskly/taskly.db"
    postgres_url: Optional[str] = None


@dataclass
class TelegramConfig:
    """Bot API settings for the outbound message channel."""

    bot_token: Optional[str] = None
    api_base: str = "https://api.telegram.org"
    timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 1.0
    app_url: Optional[str] = None


@dataclass
class SchedulerConfig:
    """
    Timing and limits for the periodic jobs.

    Durations are in seconds unless the name says otherwise.
    """

    tick_minutes: int = 15
    lookahead_days: int = 0
    advance_days: int = 7
    advance_hour: int = 0
    advance_minute: int = 5
    send_delay: float = 0.5
    store_timeout: float = 10.0
    send_timeout: float = 30.0
    summary_window_minutes: int = 15
    notification_retention_days: int = 30
    instance_retention_days: int = 90


@dataclass
class DefaultsConfig:
    """Fallbacks for users that have not set their own preferences."""

    timezone: str = "Europe/Moscow"
    reminder_time: str = "09:00"
    # Local time of the evening reminder about unfinished tasks; empty disables it
    evening_time: str = "20:00"


@dataclass
class TasklyConfig:
    """
    Complete Taskly configuration.

    Loaded from ~/.taskly/config.yaml with environment variable overrides.
    """

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)

    @property
    def default_timezone(self) -> str:
        return self.defaults.timezone

    def to_dict(self) -> dict:
        """Convert to dictionary for display (masks secrets)."""
        result = asdict(self)

        if result.get("database", {}).get("postgres_url"):
            url = result["database"]["postgres_url"]
            result["database"]["postgres_url"] = url[:30] + "..." if len(url) > 30 else "***"

        if result.get("telegram", {}).get("bot_token"):
            result["telegram"]["bot_token"] = "***"

        return result


def _parse_database_config(data: dict) -> DatabaseConfig:
    """Parse database configuration from YAML data."""
    db_data = data.get("database", {}) or {}

    sqlite_config = db_data.get("sqlite", {}) or {}
    postgres_config = db_data.get("postgres", {}) or {}

    postgres_url = postgres_config.get("url")

    # Check for URL from environment variable reference
    url_env = postgres_config.get("url_env")
    if url_env and not postgres_url:
        postgres_url = os.environ.get(url_env)

    return DatabaseConfig(
        type=db_data.get("type", "sqlite"),
        sqlite_path=sqlite_config.get("path", "~/.taskly/taskly.db"),
        postgres_url=postgres_url,
    )


def _parse_telegram_config(data: dict) -> TelegramConfig:
    """Parse Telegram configuration from YAML data."""
    tg_data = data.get("telegram", {}) or {}
    defaults = TelegramConfig()

    bot_token = tg_data.get("bot_token")
    token_env = tg_data.get("bot_token_env")
    if token_env and not bot_token:
        bot_token = os.environ.get(token_env)

    return TelegramConfig(
        bot_token=bot_token,
        api_base=tg_data.get("api_base", defaults.api_base),
        timeout=float(tg_data.get("timeout", defaults.timeout)),
        max_retries=int(tg_data.get("max_retries", defaults.max_retries)),
        retry_delay=float(tg_data.get("retry_delay", defaults.retry_delay)),
        app_url=tg_data.get("app_url"),
    )


def _parse_scheduler_config(data: dict) -> SchedulerConfig:
    """Parse scheduler configuration from YAML data, keeping defaults for unknown keys."""
    sched_data = data.get("scheduler", {}) or {}
    config = SchedulerConfig()

    for name, default in asdict(config).items():
        if name in sched_data and sched_data[name] is not None:
            setattr(config, name, type(default)(sched_data[name]))

    unknown = set(sched_data) - set(asdict(config))
    if unknown:
        logger.warning(f"Ignoring unknown scheduler settings: {', '.join(sorted(unknown))}")

    return config


def _parse_defaults_config(data: dict) -> DefaultsConfig:
    """Parse per-user defaults from YAML data."""
    defaults_data = data.get("defaults", {}) or {}

    return DefaultsConfig(
        timezone=defaults_data.get("timezone", "Europe/Moscow"),
        reminder_time=defaults_data.get("reminder_time", "09:00"),
        evening_time=defaults_data.get("evening_time", "20:00") or "",
    )


def load_config(config_path: Optional[Path] = None) -> TasklyConfig:
    """
    Load configuration from file with environment variable overrides.

    Args:
        config_path: Optional path to config file. Defaults to ~/.taskly/config.yaml

    Returns:
        TasklyConfig instance
    """
    config_file = config_path or CONFIG_FILE
    config = TasklyConfig()

    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                data = yaml.safe_load(f) or {}

            config.database = _parse_database_config(data)
            config.telegram = _parse_telegram_config(data)
            config.scheduler = _parse_scheduler_config(data)
            config.defaults = _parse_defaults_config(data)

        except yaml.YAMLError as e:
            logger.warning(f"Could not parse config file at {config_file}: {e}")
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Unexpected error loading config from {config_file}: {e}")

    # Environment variable overrides
    if os.environ.get("TASKLY_DATABASE_URL"):
        config.database.type = "postgres"
        config.database.postgres_url = os.environ["TASKLY_DATABASE_URL"]
    elif os.environ.get("SUPABASE_DB_URL"):
        config.database.type = "postgres"
        config.database.postgres_url = os.environ["SUPABASE_DB_URL"]

    if os.environ.get("TELEGRAM_BOT_TOKEN"):
        config.telegram.bot_token = os.environ["TELEGRAM_BOT_TOKEN"]

    if os.environ.get("TASKLY_APP_URL"):
        config.telegram.app_url = os.environ["TASKLY_APP_URL"]

    if os.environ.get("TASKLY_DEFAULT_TIMEZONE"):
        config.defaults.timezone = os.environ["TASKLY_DEFAULT_TIMEZONE"]

    if os.environ.get("TASKLY_TICK_MINUTES"):
        try:
            config.scheduler.tick_minutes = int(os.environ["TASKLY_TICK_MINUTES"])
        except ValueError:
            logger.warning(f"Ignoring invalid TASKLY_TICK_MINUTES={os.environ['TASKLY_TICK_MINUTES']!r}")

    return config


def save_config(config: TasklyConfig, config_path: Optional[Path] = None) -> None:
    """
    Save configuration to file.

    The bot token is never written; configure it through TELEGRAM_BOT_TOKEN.

    Args:
        config: TasklyConfig instance to save
        config_path: Optional path to config file. Defaults to ~/.taskly/config.yaml
    """
    config_file = config_path or CONFIG_FILE

    # Ensure config directory exists
    config_file.parent.mkdir(parents=True, exist_ok=True)

    telegram = asdict(config.telegram)
    telegram.pop("bot_token")
    telegram["bot_token_env"] = "TELEGRAM_BOT_TOKEN"

    data = {
        "database": {
            "type": config.database.type,
        },
        "telegram": telegram,
        "scheduler": asdict(config.scheduler),
        "defaults": asdict(config.defaults),
    }

    # Add database-specific config
    if config.database.type == "sqlite":
        data["database"]["sqlite"] = {"path": config.database.sqlite_path}
    elif config.database.postgres_url:
        data["database"]["postgres"] = {"url": config.database.postgres_url}

    with open(config_file, 'w') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    # Secure permissions (readable only by owner)
    config_file.chmod(0o600)

    logger.info(f"Configuration saved to {config_file}")


# Cached config instance
_config: Optional[TasklyConfig] = None


def get_config() -> TasklyConfig:
    """Get cached config instance, loading if needed."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> TasklyConfig:
    """Force reload config from file."""
    global _config
    _config = load_config()
    return _config
