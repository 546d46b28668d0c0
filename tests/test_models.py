"""
Data model tests.
"""

from datetime import datetime, timezone

import pytest

from crashwatch.database.models import (
    CooldownEntry,
    CooldownState,
    Market,
    PricePoint,
    SymbolType,
    Timeframe,
)
from crashwatch.errors import CrashwatchError, FetchError, ValidationError


class TestEnums:
    """Test enum parsing."""

    def test_parse_is_case_insensitive(self):
        """Should parse names regardless of case."""
        assert Market.parse("india") is Market.INDIA
        assert SymbolType.parse("mutual_fund") is SymbolType.MUTUAL_FUND
        assert Timeframe.parse("YEAR") is Timeframe.YEAR

    def test_parse_passes_members_through(self):
        """Should return enum members unchanged."""
        assert Timeframe.parse(Timeframe.WEEK) is Timeframe.WEEK

    def test_parse_unknown_raises(self):
        """Should raise ValidationError for unknown values."""
        with pytest.raises(ValidationError):
            Timeframe.parse("quarter")
        with pytest.raises(ValidationError):
            Market.parse(None)

    def test_enums_are_strings(self):
        """Enum values should compare equal to their stored strings."""
        assert Market.USA == "USA"
        assert Timeframe.DAY.value == "day"


class TestCooldownEntry:
    """Test CooldownEntry helpers."""

    def test_key_and_active(self):
        """Should expose the suppression key and active flag."""
        entry = CooldownEntry(
            symbol="TCS",
            market=Market.INDIA,
            threshold=10,
            timeframe=Timeframe.WEEK,
            last_alert_timestamp=datetime(2026, 3, 10, tzinfo=timezone.utc),
            reference_price=4000.0,
        )
        assert entry.key == ("TCS", Market.INDIA, 10, Timeframe.WEEK)
        assert entry.active is True

        entry.state = CooldownState.INACTIVE
        assert entry.active is False


class TestPricePoint:
    """Test PricePoint immutability."""

    def test_price_point_is_frozen(self):
        """Should not allow mutation."""
        point = PricePoint(
            symbol="AAPL",
            market=Market.USA,
            price=190.0,
            timestamp=datetime(2026, 3, 10, tzinfo=timezone.utc),
            source="yahoo",
        )
        with pytest.raises(AttributeError):
            point.price = 1.0


class TestErrors:
    """Test exception taxonomy."""

    def test_fetch_error_carries_context(self):
        """FetchError should keep symbol and source."""
        error = FetchError("INFY", "nse", "HTTP 503")
        assert isinstance(error, CrashwatchError)
        assert error.symbol == "INFY"
        assert error.source == "nse"
        assert "INFY" in str(error) and "nse" in str(error)
