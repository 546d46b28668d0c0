"""
Threshold ladder and drop signal types.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from crashwatch.database.models import Alert, Market, Timeframe


def drop_percentage(historical_price: float, price: float) -> float:
    """
    Percentage fall from the historical price to the current price.

    Rises clamp to 0.0.
    """
    if historical_price <= 0:
        raise ValueError("historical_price must be positive")
    drop = (historical_price - price) / historical_price * 100
    return max(drop, 0.0)


class ThresholdLadder:
    """Ordered drop thresholds; a drop maps to the highest one it crosses."""

    def __init__(self, thresholds: Iterable[int] = (5, 10, 15, 20), critical_threshold: int = 20):
        ordered = sorted(set(thresholds))
        if not ordered:
            raise ValueError("ThresholdLadder needs at least one threshold")
        if ordered[0] <= 0:
            raise ValueError("Thresholds must be positive")
        self.thresholds = tuple(ordered)
        self.critical_threshold = critical_threshold

    def select(self, drop: float) -> Optional[int]:
        """Highest threshold <= drop, or None below the first rung."""
        crossed = None
        for threshold in self.thresholds:
            if drop >= threshold:
                crossed = threshold
            else:
                break
        return crossed

    def is_critical(self, threshold: int) -> bool:
        return threshold >= self.critical_threshold

    @property
    def lowest(self) -> int:
        return self.thresholds[0]

    def __iter__(self):
        return iter(self.thresholds)

    def __repr__(self) -> str:
        return f"ThresholdLadder({list(self.thresholds)})"


@dataclass(frozen=True)
class DropSignal:
    """A threshold crossing found by the detector, before cooldown filtering."""

    symbol: str
    market: Market
    timeframe: Timeframe
    threshold: int
    drop_percentage: float
    price: float
    historical_price: float
    critical: bool

    @property
    def key(self) -> tuple:
        return (self.symbol, self.market, self.threshold, self.timeframe)

    def to_alert(self, timestamp: datetime) -> Alert:
        return Alert(
            symbol=self.symbol,
            market=self.market,
            threshold=self.threshold,
            timeframe=self.timeframe,
            drop_percentage=self.drop_percentage,
            price=self.price,
            historical_price=self.historical_price,
            timestamp=timestamp,
            critical=self.critical,
        )
