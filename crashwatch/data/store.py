"""
Price store: observation log plus one daily snapshot per trading date.
"""

import logging
from typing import Iterable, Optional

from crashwatch.database.connection import Database
from crashwatch.database.models import DailySnapshot, Market, PricePoint
from crashwatch.database.repository import PriceRepository, SnapshotRepository
from crashwatch.markets import MarketClock

logger = logging.getLogger(__name__)


class PriceStore:
    """Persists PricePoints and keeps the day's snapshot at the latest price."""

    def __init__(self, db: Database, clock: Optional[MarketClock] = None):
        self.db = db
        self.clock = clock or MarketClock()
        self.prices = PriceRepository(db)
        self.snapshots = SnapshotRepository(db)

    def record(self, point: PricePoint) -> DailySnapshot:
        """
        Append the observation and upsert the snapshot for its trading date.

        Both writes commit together. The snapshot date is the point's date
        in the market's timezone, so the last observation of a session
        becomes that day's close.
        """
        snapshot = DailySnapshot(
            symbol=point.symbol,
            market=point.market,
            date=self.clock.local_date(point.market, point.timestamp),
            close_price=point.price,
        )
        try:
            self.prices.append(point, commit=False)
            self.snapshots.upsert(snapshot, commit=False)
            self.db.connection.commit()
        except Exception:
            self.db.connection.rollback()
            raise
        return snapshot

    def record_many(self, points: Iterable[PricePoint]) -> int:
        count = 0
        for point in points:
            self.record(point)
            count += 1
        return count

    def latest(self, symbol: str, market: Market) -> Optional[PricePoint]:
        return self.prices.latest(symbol, market)
