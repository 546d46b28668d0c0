"""
Telegram Bot API notifier.
"""

import requests

from crashwatch.errors import NotificationError

from .base import Notifier, NotificationResult
from .templates import Message


class TelegramNotifier(Notifier):
    """Sends notifications to a Telegram chat through a bot."""

    channel = "telegram"

    API_URL = "https://api.telegram.org"

    def __init__(self, bot_token: str, chat_id: str, min_threshold: int = 10):
        super().__init__(min_threshold)
        self.bot_token = bot_token
        self.chat_id = chat_id

    def is_configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def _post(self, payload: dict) -> None:
        """Call sendMessage, raising NotificationError on any failure."""
        try:
            response = requests.post(
                f"{self.API_URL}/bot{self.bot_token}/sendMessage",
                json=payload,
                timeout=10,
            )
        except requests.RequestException as e:
            raise NotificationError(self.channel, str(e)) from e

        if not response.ok:
            raise NotificationError(
                self.channel, f"HTTP {response.status_code}: {response.text}"
            )

    def send(self, message: Message) -> NotificationResult:
        """Send message to the configured chat."""
        if not self.is_configured():
            return NotificationResult(
                success=False, channel=self.channel, error="Bot token or chat id missing"
            )

        text = message.to_html()
        if message.critical:
            text = f"<b>CRITICAL</b>\n\n{text}"

        try:
            self._post({
                "chat_id": self.chat_id,
                "text": text,
                "parse_mode": "HTML",
                # Recoveries go out silently
                "disable_notification": message.kind == "recovery",
            })
        except NotificationError as e:
            return NotificationResult(success=False, channel=self.channel, error=e.reason)
        return NotificationResult(success=True, channel=self.channel)
