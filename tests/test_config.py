"""
Configuration tests.
"""

from datetime import time as dtime
from pathlib import Path

import pytest

from crashwatch.config import (
    AppConfig,
    ConfigValidationError,
    build_config,
    load_config,
    parse_time_of_day,
)
from crashwatch.database.models import Market
from crashwatch.main import build_clock, enabled_markets

EXAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "config.example.yaml"


class TestLoadConfig:
    """Test YAML loading."""

    def test_missing_file(self, tmp_path: Path):
        """Should raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_empty_file_gives_defaults(self, tmp_path: Path):
        """An empty file yields the default configuration."""
        path = tmp_path / "config.yaml"
        path.write_text("")

        config = load_config(str(path))

        assert config.cooldown.release == "either"
        assert config.cooldown.hours == 24
        assert config.alerts.thresholds == [5, 10, 15, 20]
        assert config.recovery.horizon_days == 30
        assert config.schedule.degraded_after == 3

    def test_example_config_loads(self, monkeypatch):
        """The shipped example config is valid."""
        monkeypatch.setenv("DISCORD_WEBHOOK_URL", "https://discord.com/api/webhooks/1/x")

        config = load_config(str(EXAMPLE_CONFIG))

        assert config.notifications.discord.webhook_url == "https://discord.com/api/webhooks/1/x"
        assert config.notifications.discord.min_threshold == 20
        assert config.sources.chains["INDIA/STOCK"] == ["nse", "yahoo"]

    def test_env_substitution(self, tmp_path: Path, monkeypatch):
        """${VAR} placeholders are read from the environment."""
        monkeypatch.setenv("TG_TOKEN", "123:abc")
        monkeypatch.delenv("TG_CHAT", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text(
            "notifications:\n"
            "  telegram:\n"
            "    enabled: true\n"
            "    bot_token: ${TG_TOKEN}\n"
            "    chat_id: ${TG_CHAT}\n"
        )

        config = load_config(str(path))

        assert config.notifications.telegram.bot_token == "123:abc"
        assert config.notifications.telegram.chat_id == ""


class TestValidation:
    """Test configuration validation."""

    @pytest.mark.parametrize(
        "raw",
        [
            {"cooldown": {"release": "never"}},
            {"recovery": {"fraction": 0}},
            {"recovery": {"fraction": 2.0}},
            {"sources": {"timeout_seconds": 0}},
            {"sources": {"max_concurrency": 0}},
            {"alerts": {"thresholds": [5, -1]}},
            {"markets": {"JAPAN": {}}},
            {"markets": {"INDIA": {"timezone": "Mars/Olympus"}}},
            {"markets": {"USA": {"open": "9am"}}},
        ],
    )
    def test_invalid(self, raw):
        """Should reject invalid values."""
        with pytest.raises(ConfigValidationError):
            build_config(raw)

    def test_parse_time_of_day(self):
        """Should parse HH:MM."""
        assert parse_time_of_day("09:15") == dtime(9, 15)


class TestMarketOverrides:
    """Test clock and market selection from config."""

    def test_hours_override(self):
        """Overridden hours feed the market clock."""
        config = build_config({"markets": {"india": {"open": "10:00", "close": "14:00"}}})
        clock = build_clock(config)

        hours = clock.hours_for(Market.INDIA)
        assert hours.open_time == dtime(10, 0)
        assert hours.close_time == dtime(14, 0)
        assert hours.timezone == "Asia/Kolkata"

    def test_disabled_market(self):
        """Disabled markets get no pipeline."""
        config = build_config({"markets": {"USA": {"enabled": False}}})
        assert enabled_markets(config) == [Market.INDIA]
        assert enabled_markets(AppConfig()) == [Market.INDIA, Market.USA]
