"""
Cooldown ledger: suppresses repeat alerts for the same key.

A key is (symbol, market, threshold, timeframe). Every method here is
synchronous so a read-decide-write on a key never yields to the event loop.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from crashwatch.database.models import CooldownEntry, CooldownState, Market
from crashwatch.database.repository import CooldownRepository

from .types import DropSignal

logger = logging.getLogger(__name__)

RELEASE_TIME = "time"
RELEASE_RECOVERY = "recovery"
RELEASE_EITHER = "either"


class CooldownLedger:
    """Tracks which alert keys are standing down."""

    def __init__(
        self,
        repository: CooldownRepository,
        release: str = RELEASE_EITHER,
        duration: timedelta = timedelta(hours=24),
    ):
        if release not in (RELEASE_TIME, RELEASE_RECOVERY, RELEASE_EITHER):
            raise ValueError(f"Unknown cooldown release mode: {release}")
        self.repository = repository
        self.release = release
        self.duration = duration

    def _time_elapsed(self, entry: CooldownEntry, now: datetime) -> bool:
        return now - entry.last_alert_timestamp >= self.duration

    def _is_cleared(
        self, entry: CooldownEntry, now: datetime, price: Optional[float] = None
    ) -> bool:
        """Whether the stand-down rule lets this entry go."""
        by_time = self.release in (RELEASE_TIME, RELEASE_EITHER) and self._time_elapsed(
            entry, now
        )
        by_price = (
            self.release in (RELEASE_RECOVERY, RELEASE_EITHER)
            and price is not None
            and price >= entry.reference_price
        )
        return by_time or by_price

    def is_active(self, signal: DropSignal, now: datetime) -> bool:
        entry = self.repository.get(
            signal.symbol, signal.market, signal.threshold, signal.timeframe
        )
        return entry is not None and entry.active and not self._is_cleared(entry, now)

    def try_acquire(self, signal: DropSignal, now: datetime, commit: bool = True) -> bool:
        """
        Claim the signal's key for a new alert.

        With ``commit=False`` the activation joins the caller's transaction.

        Returns:
            True if the alert may be raised (the key is now active),
            False if an active cooldown suppresses it
        """
        entry = self.repository.get(
            signal.symbol, signal.market, signal.threshold, signal.timeframe
        )
        if entry is not None and entry.active:
            if not self._is_cleared(entry, now, signal.price):
                logger.debug(
                    f"Suppressed {signal.symbol} {signal.timeframe.value} "
                    f"{signal.threshold}% (cooldown since {entry.last_alert_timestamp})"
                )
                return False
            logger.debug(f"Cooldown cleared for {entry.key}")

        self.repository.save(
            CooldownEntry(
                symbol=signal.symbol,
                market=signal.market,
                threshold=signal.threshold,
                timeframe=signal.timeframe,
                last_alert_timestamp=now,
                reference_price=signal.historical_price,
                state=CooldownState.ACTIVE,
            ),
            commit=commit,
        )
        return True

    def release_on_price(
        self, symbol: str, market: Market, price: float, now: datetime
    ) -> int:
        """Deactivate the symbol's entries whose stand-down rule has cleared."""
        released = 0
        for entry in self.repository.list_active(symbol=symbol, market=market):
            if self._is_cleared(entry, now, price):
                self.repository.set_state(entry.id, CooldownState.INACTIVE)
                released += 1
        if released:
            logger.info(f"Released {released} cooldown(s) for {symbol} at {price}")
        return released

    def release_expired(self, now: datetime) -> int:
        """Sweep entries whose duration has elapsed."""
        if self.release == RELEASE_RECOVERY:
            return 0
        released = 0
        for entry in self.repository.list_active():
            if self._time_elapsed(entry, now):
                self.repository.set_state(entry.id, CooldownState.INACTIVE)
                released += 1
        if released:
            logger.info(f"Released {released} expired cooldown(s)")
        return released

    def active_entries(self, market: Optional[Market] = None) -> list[CooldownEntry]:
        return self.repository.list_active(market=market)
