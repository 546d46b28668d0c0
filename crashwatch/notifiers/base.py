"""
Base notifier classes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .templates import Message


@dataclass
class NotificationResult:
    """Result of a notification attempt."""

    success: bool
    channel: str
    error: Optional[str] = None


class Notifier(ABC):
    """Abstract base class for notifiers."""

    channel: str = "base"

    def __init__(self, min_threshold: int = 0):
        # Lowest alert threshold this channel is routed
        self.min_threshold = min_threshold

    @abstractmethod
    def send(self, message: Message) -> NotificationResult:
        """
        Send a single rendered message.

        Args:
            message: Message to send

        Returns:
            NotificationResult indicating success or failure

        Implementations may instead raise NotificationError; the
        dispatcher records it as a failed, retryable delivery.
        """
        pass

    def accepts(self, threshold: int) -> bool:
        return threshold >= self.min_threshold

    def is_configured(self) -> bool:
        return True


class NotifierFactory:
    """Factory for creating notifier instances from configuration."""

    @staticmethod
    def from_config(notifications) -> list[Notifier]:
        """
        Create every enabled notifier.

        Args:
            notifications: NotificationsConfig section

        Returns:
            Enabled Notifier instances
        """
        notifiers: list[Notifier] = []

        if notifications.discord.enabled:
            from .discord import DiscordNotifier

            discord = notifications.discord
            notifiers.append(
                DiscordNotifier(
                    webhook_url=discord.webhook_url,
                    mention_on_critical=discord.mention_on_critical,
                    include_chart_link=discord.include_chart_link,
                    min_threshold=discord.min_threshold,
                )
            )

        if notifications.email.enabled:
            from .email import EmailNotifier

            email = notifications.email
            notifiers.append(
                EmailNotifier(
                    smtp_host=email.smtp_host,
                    smtp_port=email.smtp_port,
                    smtp_user=email.smtp_user,
                    smtp_password=email.smtp_password,
                    from_address=email.from_address,
                    to_addresses=email.to_addresses,
                    min_threshold=email.min_threshold,
                )
            )

        if notifications.telegram.enabled:
            from .telegram import TelegramNotifier

            telegram = notifications.telegram
            notifiers.append(
                TelegramNotifier(
                    bot_token=telegram.bot_token,
                    chat_id=telegram.chat_id,
                    min_threshold=telegram.min_threshold,
                )
            )

        return notifiers
