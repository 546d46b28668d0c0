"""
Discord webhook notifier.
"""

import time
from typing import Any

import requests

from crashwatch.data.symbols import to_yahoo_ticker
from crashwatch.database.models import SymbolType

from .base import Notifier, NotificationResult
from .templates import SEVERITY_CRITICAL, SEVERITY_HIGH, SEVERITY_RECOVERY, Message


def post_webhook(webhook_url: str, payload: dict[str, Any]) -> requests.Response:
    """POST to a webhook, retrying once after a 429."""
    response = requests.post(webhook_url, json=payload, timeout=10)

    if response.status_code == 429:
        retry_after = response.headers.get("Retry-After", "1")
        time.sleep(float(retry_after))
        response = requests.post(webhook_url, json=payload, timeout=10)

    return response


class DiscordNotifier(Notifier):
    """Sends notifications via Discord webhook."""

    channel = "discord"

    # Discord embed colors
    COLOR_INFO = 0x3498DB  # Blue
    COLOR_WARNING = 0xFFA500  # Orange
    COLOR_CRITICAL = 0xFF0000  # Red
    COLOR_RECOVERY = 0x2ECC71  # Green

    def __init__(
        self,
        webhook_url: str,
        mention_on_critical: bool = True,
        include_chart_link: bool = True,
        min_threshold: int = 10,
    ):
        """
        Initialize Discord notifier.

        Args:
            webhook_url: Discord webhook URL
            mention_on_critical: Whether to @here on critical alerts
            include_chart_link: Whether to include a Yahoo Finance quote link
            min_threshold: Lowest alert threshold routed to Discord
        """
        super().__init__(min_threshold)
        self.webhook_url = webhook_url
        self.mention_on_critical = mention_on_critical
        self.include_chart_link = include_chart_link

    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    def send(self, message: Message) -> NotificationResult:
        """Send message to Discord."""
        if not self.is_configured():
            return NotificationResult(
                success=False, channel=self.channel, error="Webhook URL not configured"
            )
        try:
            response = post_webhook(self.webhook_url, self._create_payload(message))

            if response.ok:
                return NotificationResult(success=True, channel=self.channel)
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=f"HTTP {response.status_code}: {response.text}",
            )

        except requests.exceptions.ConnectionError as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=f"Connection error: {str(e)}",
            )
        except requests.RequestException as e:
            return NotificationResult(success=False, channel=self.channel, error=str(e))

    def _create_payload(self, message: Message) -> dict[str, Any]:
        """Create Discord webhook payload."""
        payload: dict[str, Any] = {
            "embeds": [self._create_embed(message)],
        }

        if self.mention_on_critical and message.critical:
            payload["content"] = "@here CRITICAL"

        return payload

    def _create_embed(self, message: Message) -> dict[str, Any]:
        """Create Discord embed for a message."""
        embed: dict[str, Any] = {
            "title": f"{message.title}: {message.symbol}",
            "description": message.subject,
            "color": self._get_color(message.severity),
            "fields": [
                {"name": name, "value": value, "inline": True}
                for name, value in message.fields
            ],
            "timestamp": message.timestamp.isoformat(),
        }

        if self.include_chart_link:
            ticker = to_yahoo_ticker(message.symbol, message.market, SymbolType.STOCK)
            embed["fields"].append({
                "name": "Chart",
                "value": f"[Yahoo Finance](https://finance.yahoo.com/quote/{ticker})",
                "inline": True,
            })

        if message.footer:
            embed["footer"] = {"text": message.footer}

        return embed

    def _get_color(self, severity: str) -> int:
        """Get embed color based on severity."""
        if severity == SEVERITY_CRITICAL:
            return self.COLOR_CRITICAL
        elif severity == SEVERITY_HIGH:
            return self.COLOR_WARNING
        elif severity == SEVERITY_RECOVERY:
            return self.COLOR_RECOVERY
        else:
            return self.COLOR_INFO
