"""
Market clock tests.
Tests for trading-session rules per market.
"""

from datetime import date, datetime, time as dtime, timezone
from zoneinfo import ZoneInfo

import pytest

from crashwatch.database.models import Market
from crashwatch.errors import ValidationError
from crashwatch.markets import MarketClock, MarketHours, is_open, next_transition

IST = ZoneInfo("Asia/Kolkata")
NY = ZoneInfo("America/New_York")


class TestIsOpen:
    """Test session open/closed decisions."""

    def test_india_open_mid_session(self, india_now):
        """Should be open at 10:30 IST on a Tuesday."""
        assert is_open(Market.INDIA, india_now) is True

    def test_india_open_at_exact_open(self):
        """Should be open at exactly 09:15 IST."""
        now = datetime(2026, 3, 10, 9, 15, tzinfo=IST)
        assert is_open(Market.INDIA, now) is True

    def test_india_closed_at_exact_close(self):
        """Session is half-open, so 15:30 IST is closed."""
        now = datetime(2026, 3, 10, 15, 30, tzinfo=IST)
        assert is_open(Market.INDIA, now) is False

    def test_india_closed_before_open(self):
        """Should be closed at 09:14 IST."""
        now = datetime(2026, 3, 10, 9, 14, tzinfo=IST)
        assert is_open(Market.INDIA, now) is False

    def test_closed_on_weekend(self):
        """Should be closed on Saturday."""
        now = datetime(2026, 3, 14, 11, 0, tzinfo=IST)
        assert is_open(Market.INDIA, now) is False
        assert is_open(Market.USA, datetime(2026, 3, 14, 11, 0, tzinfo=NY)) is False

    def test_usa_open_mid_session(self, usa_now):
        """Should be open at 11:00 New York time."""
        assert is_open(Market.USA, usa_now) is True

    def test_markets_are_independent(self, india_now):
        """India open does not imply USA open."""
        assert is_open(Market.INDIA, india_now) is True
        assert is_open(Market.USA, india_now) is False

    def test_accepts_market_name_string(self, usa_now):
        """Should accept a case-insensitive market name."""
        assert is_open("usa", usa_now) is True

    def test_rejects_naive_datetime(self):
        """Should reject a timezone-naive datetime."""
        with pytest.raises(ValidationError):
            is_open(Market.INDIA, datetime(2026, 3, 10, 10, 0))

    def test_rejects_unknown_market(self, india_now):
        """Should reject an unknown market."""
        with pytest.raises(ValidationError):
            is_open("JAPAN", india_now)


class TestNextTransition:
    """Test next open/close computation."""

    def test_close_time_when_open(self, india_now):
        """Should return today's close while the session is open."""
        result = next_transition(Market.INDIA, india_now)
        assert result == datetime(2026, 3, 10, 15, 30, tzinfo=IST)

    def test_same_day_open_before_session(self):
        """Should return today's open before the session starts."""
        now = datetime(2026, 3, 10, 8, 0, tzinfo=NY)
        assert next_transition(Market.USA, now) == datetime(2026, 3, 10, 9, 30, tzinfo=NY)

    def test_skips_weekend(self):
        """Friday after close should roll to Monday's open."""
        now = datetime(2026, 3, 13, 17, 0, tzinfo=NY)
        assert next_transition(Market.USA, now) == datetime(2026, 3, 16, 9, 30, tzinfo=NY)


class TestMarketClock:
    """Test configurable clock."""

    def test_local_date_uses_market_timezone(self):
        """20:00 UTC is already the next day in India."""
        clock = MarketClock()
        now = datetime(2026, 3, 10, 20, 0, tzinfo=timezone.utc)
        assert clock.local_date(Market.INDIA, now) == date(2026, 3, 11)
        assert clock.local_date(Market.USA, now) == date(2026, 3, 10)

    def test_override_hours(self, india_now):
        """Should honour overridden session hours."""
        clock = MarketClock(
            {
                Market.INDIA: MarketHours(
                    market=Market.INDIA,
                    timezone="Asia/Kolkata",
                    open_time=dtime(11, 0),
                    close_time=dtime(12, 0),
                )
            }
        )
        assert clock.is_open(Market.INDIA, india_now) is False
        # USA keeps its defaults
        assert clock.hours_for(Market.USA).open_time == dtime(9, 30)
