"""
Post-alert recovery tracking.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from crashwatch.database.models import Alert, Market, RecoveryRecord, RecoveryState
from crashwatch.database.repository import RecoveryRepository

logger = logging.getLogger(__name__)


@dataclass
class RecoveryStats:
    """Aggregate recovery figures for a set of records."""

    total: int
    recovered: int
    expired: int
    pending: int
    recovery_rate: float  # percent of records that recovered
    mean_recovery_seconds: Optional[float]


class RecoveryTracker:
    """Follows each alerted symbol until it regains its reference price."""

    def __init__(
        self,
        repository: RecoveryRepository,
        fraction: float = 1.0,
        horizon: timedelta = timedelta(days=30),
    ):
        self.repository = repository
        self.fraction = fraction
        self.horizon = horizon

    def open(self, alert: Alert, now: datetime, commit: bool = True) -> RecoveryRecord:
        """Start tracking a persisted alert."""
        if alert.id is None:
            raise ValueError("Alert must be persisted before tracking recovery")
        existing = self.repository.get_by_alert_id(alert.id)
        if existing is not None:
            return existing
        record = RecoveryRecord(
            alert_id=alert.id,
            symbol=alert.symbol,
            market=alert.market,
            reference_price=alert.historical_price,
            trough_price=alert.price,
            opened_at=now,
        )
        return self.repository.create(record, commit=commit)

    def target_price(self, record: RecoveryRecord) -> float:
        return record.reference_price * self.fraction

    def _advance(
        self, record: RecoveryRecord, price: float, now: datetime
    ) -> Optional[RecoveryState]:
        """Apply one observation. Returns the new state if it changed."""
        if now - record.opened_at > self.horizon:
            record.state = RecoveryState.EXPIRED
            return RecoveryState.EXPIRED

        if price < record.trough_price:
            record.trough_price = price

        if price >= self.target_price(record):
            record.state = RecoveryState.RECOVERED
            record.recovery_price = price
            record.recovered_at = now
            record.recovery_percent = round(
                (price - record.trough_price) / record.trough_price * 100, 2
            )
            record.duration_seconds = int((now - record.opened_at).total_seconds())
            return RecoveryState.RECOVERED
        return None

    def observe(
        self, symbol: str, market: Market, price: float, now: datetime
    ) -> list[RecoveryRecord]:
        """
        Feed a new price to every pending record of the symbol.

        Returns:
            Records that transitioned to recovered on this observation
        """
        recovered = []
        for record in self.repository.list_pending(symbol=symbol, market=market):
            previous_trough = record.trough_price
            new_state = self._advance(record, price, now)
            if new_state is None and record.trough_price == previous_trough:
                continue
            self.repository.update(record)
            if new_state == RecoveryState.RECOVERED:
                logger.info(
                    f"{symbol} recovered to {price} "
                    f"(+{record.recovery_percent}% from trough {record.trough_price})"
                )
                recovered.append(record)
            elif new_state == RecoveryState.EXPIRED:
                logger.info(f"Recovery tracking for {symbol} alert {record.alert_id} expired")
        return recovered

    def expire_stale(self, now: datetime) -> int:
        """Expire pending records older than the horizon."""
        expired = 0
        for record in self.repository.list_pending():
            if now - record.opened_at > self.horizon:
                record.state = RecoveryState.EXPIRED
                self.repository.update(record)
                expired += 1
        return expired

    def mark_notified(self, record: RecoveryRecord) -> None:
        record.notified = True
        self.repository.update(record)

    def recovery_stats(self, market: Market, since: datetime) -> RecoveryStats:
        records = self.repository.list_since(market, since)
        return summarize_recoveries(records)


def summarize_recoveries(records: list[RecoveryRecord]) -> RecoveryStats:
    recovered = [r for r in records if r.state == RecoveryState.RECOVERED]
    expired = sum(1 for r in records if r.state == RecoveryState.EXPIRED)
    durations = [r.duration_seconds for r in recovered if r.duration_seconds is not None]
    total = len(records)
    return RecoveryStats(
        total=total,
        recovered=len(recovered),
        expired=expired,
        pending=total - len(recovered) - expired,
        recovery_rate=(len(recovered) / total * 100) if total else 0.0,
        mean_recovery_seconds=(sum(durations) / len(durations)) if durations else None,
    )
