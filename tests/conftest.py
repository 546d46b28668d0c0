"""
Pytest configuration and shared fixtures.
"""

import threading
import time
from datetime import datetime, timezone

import pytest

from crashwatch.data.sources import PriceSource
from crashwatch.database.connection import Database
from crashwatch.errors import FetchError
from crashwatch.notifiers.base import NotificationResult, Notifier

# Tuesday 10 March 2026
INDIA_SESSION = datetime(2026, 3, 10, 5, 0, tzinfo=timezone.utc)  # 10:30 IST
USA_SESSION = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)  # 11:00 EDT


class FakeSource(PriceSource):
    """In-memory price source keyed by symbol."""

    def __init__(self, name: str, prices=None, fail: bool = False, delay: float = 0.0):
        super().__init__(timeout=1.0)
        self.name = name
        self.prices = dict(prices or {})
        self.fail = fail
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def fetch(self, symbol, symbol_type, market):
        with self._lock:
            self.calls.append(symbol)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.fail or symbol not in self.prices:
                raise FetchError(symbol, self.name, "unavailable")
            return self.prices[symbol]
        finally:
            with self._lock:
                self.active -= 1


class RecordingNotifier(Notifier):
    """Notifier that records messages instead of sending them."""

    def __init__(self, channel: str = "recording", min_threshold: int = 0, succeed: bool = True):
        super().__init__(min_threshold)
        self.channel = channel
        self.succeed = succeed
        self.sent = []

    def send(self, message):
        self.sent.append(message)
        if self.succeed:
            return NotificationResult(success=True, channel=self.channel)
        return NotificationResult(success=False, channel=self.channel, error="boom")


@pytest.fixture
def db():
    """In-memory database with schema."""
    database = Database(":memory:")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def india_now():
    return INDIA_SESSION


@pytest.fixture
def usa_now():
    return USA_SESSION


@pytest.fixture
def make_source():
    """Factory for in-memory price sources."""
    return FakeSource


@pytest.fixture
def make_notifier():
    """Factory for recording notifiers."""
    return RecordingNotifier


@pytest.fixture
def sample_discord_webhook_url():
    """Sample Discord webhook URL for testing."""
    return "https://discord.com/api/webhooks/123456789/abcdefghijklmnop"


@pytest.fixture
def sample_smtp_config():
    """Sample SMTP configuration for testing."""
    return {
        "host": "smtp.gmail.com",
        "port": 587,
        "user": "test@gmail.com",
        "password": "test-app-password",
        "from_address": "alerts@crashwatch.app",
        "to_addresses": ["recipient@example.com"],
    }
