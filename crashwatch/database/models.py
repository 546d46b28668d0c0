"""
Data models for the crashwatch monitoring core.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional

from crashwatch.errors import ValidationError


class _ParsableEnum(str, Enum):
    """String enum with a validating parser."""

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        raise ValidationError(f"Unknown {cls.__name__}: {value!r}")


class Market(_ParsableEnum):
    """Independent trading venue."""

    INDIA = "INDIA"
    USA = "USA"


class SymbolType(_ParsableEnum):
    """Kind of security on the watchlist."""

    INDEX = "INDEX"
    STOCK = "STOCK"
    MUTUAL_FUND = "MUTUAL_FUND"


class Timeframe(_ParsableEnum):
    """Lookback interval used to pick a historical reference price."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class CooldownState(_ParsableEnum):
    INACTIVE = "inactive"
    ACTIVE = "active"


class RecoveryState(_ParsableEnum):
    PENDING = "pending"
    RECOVERED = "recovered"
    EXPIRED = "expired"


@dataclass
class WatchlistSymbol:
    """Monitored symbol in one market."""

    symbol: str
    market: Market
    type: SymbolType
    exchange: str
    active: bool = True
    name: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class PricePoint:
    """One successful price observation."""

    symbol: str
    market: Market
    price: float
    timestamp: datetime
    source: str


@dataclass
class DailySnapshot:
    """Closing price for one trading date."""

    symbol: str
    market: Market
    date: date
    close_price: float


@dataclass
class Alert:
    """A raised price-drop alert."""

    symbol: str
    market: Market
    threshold: int
    timeframe: Timeframe
    drop_percentage: float
    price: float
    historical_price: float
    timestamp: datetime
    critical: bool = False
    notified: bool = False
    id: Optional[int] = None
    notified_at: Optional[datetime] = None
    delivery_attempts: int = 0
    # No enabled channel accepts the threshold; never retried
    unrouted: bool = False


@dataclass
class CooldownEntry:
    """Suppression window for one (symbol, market, threshold, timeframe) key."""

    symbol: str
    market: Market
    threshold: int
    timeframe: Timeframe
    last_alert_timestamp: datetime
    reference_price: float
    state: CooldownState = CooldownState.ACTIVE
    id: Optional[int] = None

    @property
    def key(self) -> tuple:
        return (self.symbol, self.market, self.threshold, self.timeframe)

    @property
    def active(self) -> bool:
        return self.state == CooldownState.ACTIVE


@dataclass
class RecoveryRecord:
    """Post-alert recovery tracking for one alert."""

    alert_id: int
    symbol: str
    market: Market
    reference_price: float
    trough_price: float
    opened_at: datetime
    state: RecoveryState = RecoveryState.PENDING
    recovery_price: Optional[float] = None
    recovered_at: Optional[datetime] = None
    recovery_percent: Optional[float] = None
    duration_seconds: Optional[int] = None
    notified: bool = False
    id: Optional[int] = None


@dataclass
class MarketStatus:
    """Health of one market's pipeline."""

    market: Market
    degraded_after: int = 3
    is_updating: bool = False
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_update_start: Optional[datetime] = None
    last_update_complete: Optional[datetime] = None
    last_update_duration: Optional[float] = None  # seconds
    last_success: Optional[datetime] = None
    symbol_count: int = 0
    skipped_ticks: int = 0

    @property
    def degraded(self) -> bool:
        return self.consecutive_failures >= self.degraded_after

    def record_success(self, now: datetime) -> None:
        self.consecutive_failures = 0
        self.last_error = None
        self.last_success = now

    def record_failure(self, error: str) -> None:
        self.consecutive_failures += 1
        self.last_error = error
