"""
Drop detection across timeframes.
"""

import logging
from typing import Mapping, Optional

from crashwatch.database.models import DailySnapshot, Market, Timeframe
from crashwatch.errors import MissingHistoricalReference

from .types import DropSignal, ThresholdLadder, drop_percentage

logger = logging.getLogger(__name__)

__all__ = ["DropDetector", "DropSignal", "ThresholdLadder"]


class DropDetector:
    """Evaluates a current price against per-timeframe reference prices."""

    def __init__(self, ladder: Optional[ThresholdLadder] = None):
        self.ladder = ladder or ThresholdLadder()

    def evaluate_timeframe(
        self,
        symbol: str,
        market: Market,
        timeframe: Timeframe,
        price: Optional[float],
        historical_price: Optional[float],
    ) -> Optional[DropSignal]:
        """
        Evaluate one timeframe.

        Returns:
            A signal for the highest crossed threshold, or None

        Raises:
            MissingHistoricalReference: If there is no usable reference price
        """
        if historical_price is None or historical_price <= 0:
            raise MissingHistoricalReference(symbol, market.value, timeframe.value)
        if price is None:
            return None

        drop = drop_percentage(historical_price, price)
        threshold = self.ladder.select(drop)
        if threshold is None:
            return None

        return DropSignal(
            symbol=symbol,
            market=market,
            timeframe=timeframe,
            threshold=threshold,
            drop_percentage=drop,
            price=price,
            historical_price=historical_price,
            critical=self.ladder.is_critical(threshold),
        )

    def evaluate(
        self,
        symbol: str,
        market: Market,
        price: Optional[float],
        references: Mapping[Timeframe, Optional[DailySnapshot]],
    ) -> list[DropSignal]:
        """
        Evaluate every timeframe independently.

        Timeframes without a reference are skipped; at most one signal is
        returned per timeframe.
        """
        signals = []
        if price is None:
            return signals

        for timeframe in Timeframe:
            snapshot = references.get(timeframe)
            try:
                signal = self.evaluate_timeframe(
                    symbol,
                    market,
                    timeframe,
                    price,
                    snapshot.close_price if snapshot else None,
                )
            except MissingHistoricalReference as e:
                logger.debug(str(e))
                continue
            if signal is not None:
                signals.append(signal)
        return signals
