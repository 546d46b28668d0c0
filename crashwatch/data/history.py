"""
Historical reference prices from daily snapshots.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from crashwatch.database.models import DailySnapshot, Market, SymbolType, Timeframe
from crashwatch.database.repository import SnapshotRepository
from crashwatch.markets import MarketClock

from .sources import YahooSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LookbackWindow:
    """How far back a timeframe looks and how much slack the lookup allows."""

    days: int
    tolerance_days: int


LOOKBACK_WINDOWS = {
    Timeframe.DAY: LookbackWindow(days=1, tolerance_days=3),
    Timeframe.WEEK: LookbackWindow(days=7, tolerance_days=5),
    Timeframe.MONTH: LookbackWindow(days=30, tolerance_days=7),
    Timeframe.YEAR: LookbackWindow(days=365, tolerance_days=14),
}


class HistoricalPriceResolver:
    """Finds the snapshot a timeframe's drop is measured against."""

    def __init__(
        self, snapshots: SnapshotRepository, clock: Optional[MarketClock] = None
    ):
        self.snapshots = snapshots
        self.clock = clock or MarketClock()

    def target_date(self, market: Market, timeframe: Timeframe, now: datetime) -> date:
        window = LOOKBACK_WINDOWS[Timeframe.parse(timeframe)]
        return self.clock.local_date(market, now) - timedelta(days=window.days)

    def resolve(
        self, symbol: str, market: Market, timeframe: Timeframe, now: datetime
    ) -> Optional[DailySnapshot]:
        """
        Return the latest snapshot on or before the target date and no older
        than the tolerance allows, or None when there is none.

        Raises:
            ValidationError: If the timeframe is unknown
        """
        timeframe = Timeframe.parse(timeframe)
        window = LOOKBACK_WINDOWS[timeframe]
        target = self.target_date(market, timeframe, now)
        earliest = target - timedelta(days=window.tolerance_days)
        return self.snapshots.closest_on_or_before(symbol, market, target, earliest)

    def resolve_all(
        self, symbol: str, market: Market, now: datetime
    ) -> dict[Timeframe, Optional[DailySnapshot]]:
        return {tf: self.resolve(symbol, market, tf, now) for tf in Timeframe}


class SnapshotBackfiller:
    """Seeds daily snapshots for a symbol from Yahoo Finance daily history."""

    def __init__(
        self,
        snapshots: SnapshotRepository,
        yahoo: Optional[YahooSource] = None,
        timeout: float = 30.0,
    ):
        self.snapshots = snapshots
        self.yahoo = yahoo or YahooSource(timeout=timeout)
        self.timeout = timeout

    async def backfill(
        self,
        symbol: str,
        market: Market,
        symbol_type: SymbolType,
        days: int = 400,
    ) -> int:
        """
        Upsert one snapshot per trading day found in the history.

        Returns:
            Number of snapshots written

        Raises:
            FetchError: If no history is available
        """
        closes = await asyncio.wait_for(
            asyncio.to_thread(
                self.yahoo.daily_closes, symbol, symbol_type, market, days
            ),
            timeout=self.timeout,
        )
        rows = [
            DailySnapshot(symbol=symbol, market=market, date=day, close_price=close)
            for day, close in closes
        ]
        if rows:
            self.snapshots.bulk_upsert(rows)
        logger.info(f"Backfilled {len(rows)} snapshots for {symbol} ({market.value})")
        return len(rows)

    def prune(self, today: date, retention_days: int = 400) -> int:
        """Delete snapshots older than the retention window."""
        cutoff = today - timedelta(days=retention_days)
        deleted = self.snapshots.delete_older_than(cutoff)
        if deleted:
            logger.info(f"Pruned {deleted} snapshots older than {cutoff}")
        return deleted
