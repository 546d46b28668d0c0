"""
Market clock: trading-session rules per market.
"""

from dataclasses import dataclass
from datetime import datetime, time as dtime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from crashwatch.database.models import Market
from crashwatch.errors import ValidationError

CURRENCY_SYMBOLS = {
    Market.INDIA: "₹",
    Market.USA: "$",
}

MARKET_LABELS = {
    Market.INDIA: "India (NSE)",
    Market.USA: "USA (NYSE/NASDAQ)",
}


@dataclass(frozen=True)
class MarketHours:
    """Fixed weekly session for one market."""

    market: Market
    timezone: str
    open_time: dtime
    close_time: dtime
    weekdays: frozenset = frozenset({0, 1, 2, 3, 4})  # Mon-Fri

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def local(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            raise ValidationError("Market clock requires a timezone-aware datetime")
        return now.astimezone(self.tz)

    def is_open(self, now: datetime) -> bool:
        local_now = self.local(now)
        if local_now.weekday() not in self.weekdays:
            return False
        return self.open_time <= local_now.time() < self.close_time

    def next_transition(self, now: datetime) -> datetime:
        """Close time if the session is open, otherwise the next open time."""
        local_now = self.local(now)
        if self.is_open(now):
            return datetime.combine(local_now.date(), self.close_time, tzinfo=self.tz)

        day = local_now.date()
        if local_now.time() >= self.open_time:
            day += timedelta(days=1)
        while day.weekday() not in self.weekdays:
            day += timedelta(days=1)
        return datetime.combine(day, self.open_time, tzinfo=self.tz)


DEFAULT_MARKET_HOURS = {
    Market.INDIA: MarketHours(
        market=Market.INDIA,
        timezone="Asia/Kolkata",
        open_time=dtime(9, 15),
        close_time=dtime(15, 30),
    ),
    Market.USA: MarketHours(
        market=Market.USA,
        timezone="America/New_York",
        open_time=dtime(9, 30),
        close_time=dtime(16, 0),
    ),
}


class MarketClock:
    """Answers open/closed questions for every configured market."""

    def __init__(self, hours: Optional[dict[Market, MarketHours]] = None):
        self.hours = dict(DEFAULT_MARKET_HOURS)
        if hours:
            self.hours.update(hours)

    def hours_for(self, market) -> MarketHours:
        market = Market.parse(market)
        try:
            return self.hours[market]
        except KeyError:
            raise ValidationError(f"No trading hours configured for {market.value}")

    def is_open(self, market, now: datetime) -> bool:
        return self.hours_for(market).is_open(now)

    def next_transition(self, market, now: datetime) -> datetime:
        return self.hours_for(market).next_transition(now)

    def local_date(self, market, now: datetime):
        """Trading date of ``now`` in the market's timezone."""
        return self.hours_for(market).local(now).date()

    def timezone(self, market) -> ZoneInfo:
        return self.hours_for(market).tz


def is_open(market, now: datetime) -> bool:
    return MarketClock().is_open(market, now)


def next_transition(market, now: datetime) -> datetime:
    return MarketClock().next_transition(market, now)
