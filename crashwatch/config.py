"""
Configuration loading and validation.
"""

import os
import re
from dataclasses import dataclass, field
from datetime import time as dtime
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


COOLDOWN_RELEASE_MODES = ("time", "recovery", "either")


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/crashwatch.db"


@dataclass
class MarketHoursConfig:
    """Per-market session override."""

    timezone: Optional[str] = None
    open: Optional[str] = None  # "HH:MM"
    close: Optional[str] = None  # "HH:MM"
    enabled: bool = True


@dataclass
class SourcesConfig:
    """Price source configuration."""

    timeout_seconds: float = 10.0
    max_concurrency: int = 8
    # "MARKET/TYPE" -> ordered list of source names, e.g. "INDIA/STOCK": ["nse", "yahoo"]
    chains: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class ScheduleConfig:
    """Schedule configuration."""

    tick_seconds: int = 60
    degraded_after: int = 3


@dataclass
class AlertsConfig:
    """Drop threshold ladder."""

    thresholds: list[int] = field(default_factory=lambda: [5, 10, 15, 20])
    critical_threshold: int = 20


@dataclass
class CooldownConfig:
    """Cooldown stand-down rule."""

    release: str = "either"
    hours: float = 24


@dataclass
class RecoveryConfig:
    """Recovery tracking configuration."""

    fraction: float = 1.0
    horizon_days: int = 30


@dataclass
class DiscordNotificationConfig:
    """Discord notification settings."""

    enabled: bool = False
    webhook_url: str = ""
    mention_on_critical: bool = True
    include_chart_link: bool = True
    min_threshold: int = 10


@dataclass
class EmailNotificationConfig:
    """Email notification settings."""

    enabled: bool = False
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_address: str = ""
    to_addresses: list[str] = field(default_factory=list)
    min_threshold: int = 5


@dataclass
class TelegramNotificationConfig:
    """Telegram notification settings."""

    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""
    min_threshold: int = 10


@dataclass
class NotificationsConfig:
    """Notifications configuration."""

    discord: DiscordNotificationConfig = field(
        default_factory=DiscordNotificationConfig
    )
    email: EmailNotificationConfig = field(default_factory=EmailNotificationConfig)
    telegram: TelegramNotificationConfig = field(
        default_factory=TelegramNotificationConfig
    )
    notify_recoveries: bool = True


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"
    snapshot_retention_days: int = 400


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    markets: dict[str, MarketHoursConfig] = field(default_factory=dict)
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)
    cooldown: CooldownConfig = field(default_factory=CooldownConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values."""
    if isinstance(value, str):
        # Match ${VAR_NAME} pattern
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.environ.get(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def parse_time_of_day(value: str) -> dtime:
    """Parse "HH:MM" into a time."""
    try:
        hour, minute = str(value).split(":")
        return dtime(int(hour), int(minute))
    except ValueError:
        raise ConfigValidationError(f"Invalid time of day: {value!r} (expected HH:MM)")


def _validate_timezone(timezone: str) -> None:
    """Validate timezone string."""
    from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

    if not timezone:
        raise ConfigValidationError("Timezone cannot be empty")
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigValidationError(f"Unknown timezone: {timezone}")


def _validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values."""
    # Check database path is provided
    db_config = config_dict.get("database") or {}
    db_path = db_config.get("path", DatabaseConfig.path)
    if not db_path:
        raise ConfigValidationError("Database path is required")

    if db_path != ":memory:":
        parent = Path(db_path).parent
        if parent.exists() and not os.access(parent, os.W_OK):
            raise ConfigValidationError(f"Database path not writable: {parent}")

    for name, market in (config_dict.get("markets") or {}).items():
        if name.upper() not in ("INDIA", "USA"):
            raise ConfigValidationError(f"Unknown market in config: {name}")
        market = market or {}
        if market.get("timezone"):
            _validate_timezone(market["timezone"])
        for key in ("open", "close"):
            if market.get(key):
                parse_time_of_day(market[key])

    alerts = config_dict.get("alerts") or {}
    thresholds = alerts.get("thresholds", [5, 10, 15, 20])
    if not thresholds or any(float(t) <= 0 for t in thresholds):
        raise ConfigValidationError("Alert thresholds must be positive numbers")

    cooldown = config_dict.get("cooldown") or {}
    release = cooldown.get("release", "either")
    if release not in COOLDOWN_RELEASE_MODES:
        raise ConfigValidationError(
            f"cooldown.release must be one of {COOLDOWN_RELEASE_MODES}, got {release!r}"
        )

    recovery = config_dict.get("recovery") or {}
    fraction = float(recovery.get("fraction", 1.0))
    if not 0 < fraction <= 1.5:
        raise ConfigValidationError("recovery.fraction must be in (0, 1.5]")

    sources = config_dict.get("sources") or {}
    if float(sources.get("timeout_seconds", 10.0)) <= 0:
        raise ConfigValidationError("sources.timeout_seconds must be positive")
    if int(sources.get("max_concurrency", 8)) < 1:
        raise ConfigValidationError("sources.max_concurrency must be at least 1")


def build_config(config_dict: dict[str, Any]) -> AppConfig:
    """Build AppConfig from an already-parsed dictionary."""
    config_dict = _substitute_env_vars(config_dict or {})
    _validate_config(config_dict)

    database = DatabaseConfig(**(config_dict.get("database") or {}))

    markets = {
        name.upper(): MarketHoursConfig(**(values or {}))
        for name, values in (config_dict.get("markets") or {}).items()
    }

    sources = SourcesConfig(**(config_dict.get("sources") or {}))
    schedule = ScheduleConfig(**(config_dict.get("schedule") or {}))
    alerts = AlertsConfig(**(config_dict.get("alerts") or {}))
    cooldown = CooldownConfig(**(config_dict.get("cooldown") or {}))
    recovery = RecoveryConfig(**(config_dict.get("recovery") or {}))

    # Notifications
    notif_dict = config_dict.get("notifications") or {}
    notifications = NotificationsConfig(
        discord=DiscordNotificationConfig(**(notif_dict.get("discord") or {})),
        email=EmailNotificationConfig(**(notif_dict.get("email") or {})),
        telegram=TelegramNotificationConfig(**(notif_dict.get("telegram") or {})),
        notify_recoveries=notif_dict.get("notify_recoveries", True),
    )

    advanced = AdvancedConfig(**(config_dict.get("advanced") or {}))

    return AppConfig(
        database=database,
        markets=markets,
        sources=sources,
        schedule=schedule,
        alerts=alerts,
        cooldown=cooldown,
        recovery=recovery,
        notifications=notifications,
        advanced=advanced,
    )


def load_config(config_path: str) -> AppConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    return build_config(raw_config)
