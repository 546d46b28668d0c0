"""
Per-market monitoring pipeline and the tick scheduler that drives it.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from crashwatch.data.fetcher import PriceFetcher
from crashwatch.data.history import HistoricalPriceResolver
from crashwatch.data.store import PriceStore
from crashwatch.database.models import (
    Alert,
    Market,
    MarketStatus,
    PricePoint,
    RecoveryRecord,
)
from crashwatch.database.repository import (
    AlertRepository,
    MarketStatusRepository,
    WatchlistRepository,
)
from crashwatch.markets import MarketClock
from crashwatch.notifiers.dispatcher import NotificationDispatcher
from crashwatch.rules.cooldown import CooldownLedger
from crashwatch.rules.engine import DropDetector
from crashwatch.rules.recovery import RecoveryTracker

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TickReport:
    """What one market pipeline run did."""

    market: Market
    symbols: int = 0
    fetched: int = 0
    processed: int = 0
    failed: int = 0
    alerts: list[Alert] = field(default_factory=list)
    recoveries: list[RecoveryRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def total_failure(self) -> bool:
        """No symbol of a non-empty watchlist made it through the pipeline."""
        return self.symbols > 0 and self.processed == 0

    def failure_reason(self) -> str:
        if self.fetched == 0:
            reason = f"all {self.symbols} price fetches failed"
            detail = self.errors[0] if self.errors else None
        else:
            # Processing errors follow the fetch errors
            reason = f"none of {self.fetched} fetched prices could be processed"
            detail = self.errors[-1] if self.errors else None
        return f"{reason}: {detail}" if detail else reason


class MarketPipeline:
    """One market's fetch, store, detect, filter and dispatch sequence."""

    def __init__(
        self,
        market: Market,
        watchlist: WatchlistRepository,
        fetcher: PriceFetcher,
        store: PriceStore,
        resolver: HistoricalPriceResolver,
        detector: DropDetector,
        ledger: CooldownLedger,
        tracker: RecoveryTracker,
        alerts: AlertRepository,
        dispatcher: NotificationDispatcher,
        notify_recoveries: bool = True,
    ):
        self.market = market
        self.watchlist = watchlist
        self.fetcher = fetcher
        self.store = store
        self.resolver = resolver
        self.detector = detector
        self.ledger = ledger
        self.tracker = tracker
        self.alerts = alerts
        self.dispatcher = dispatcher
        self.notify_recoveries = notify_recoveries

    def process_price(
        self, symbol: str, price: float, source: str, now: datetime
    ) -> tuple[list[Alert], list[RecoveryRecord]]:
        """
        Persist one observation and raise any alerts it triggers.

        Synchronous on purpose: the cooldown decision for a key and the
        alert it guards are written without yielding to the event loop.
        """
        point = PricePoint(
            symbol=symbol, market=self.market, price=price, timestamp=now, source=source
        )
        self.store.record(point)

        self.ledger.release_on_price(symbol, self.market, price, now)
        recovered = self.tracker.observe(symbol, self.market, price, now)

        references = self.resolver.resolve_all(symbol, self.market, now)
        signals = self.detector.evaluate(symbol, self.market, price, references)

        connection = self.alerts.db.connection
        raised = []
        for signal in signals:
            # Cooldown key, alert and recovery record commit together
            try:
                if not self.ledger.try_acquire(signal, now, commit=False):
                    continue
                alert = self.alerts.create(signal.to_alert(now), commit=False)
                self.tracker.open(alert, now, commit=False)
                connection.commit()
            except Exception:
                connection.rollback()
                raise
            logger.info(
                f"ALERT {symbol} ({self.market.value}) down {signal.drop_percentage:.2f}% "
                f"vs {signal.timeframe.value} -> {signal.threshold}%"
                f"{' CRITICAL' if signal.critical else ''}"
            )
            raised.append(alert)
        return raised, recovered

    async def run_tick(self, now: datetime) -> TickReport:
        symbols = self.watchlist.list_active(self.market)
        report = TickReport(market=self.market, symbols=len(symbols))
        if not symbols:
            logger.debug(f"No active symbols for {self.market.value}")
            return report

        batch = await self.fetcher.fetch_many(symbols)
        report.fetched = batch.success_count
        report.failed = batch.failure_count
        report.errors = [str(e) for e in batch.failures.values()]

        for symbol, result in batch.prices.items():
            try:
                raised, recovered = self.process_price(
                    symbol, result.price, result.source, now
                )
            except Exception as e:
                logger.exception(f"Failed to process {symbol} ({self.market.value})")
                report.errors.append(f"{symbol}: {e}")
                continue
            report.processed += 1
            report.alerts.extend(raised)
            report.recoveries.extend(recovered)

        for alert in report.alerts:
            try:
                await self.dispatcher.notify(alert, now)
            except Exception:
                logger.exception(f"Dispatch failed for alert {alert.id}")

        if self.notify_recoveries:
            for record in report.recoveries:
                try:
                    await self.dispatcher.notify_recovery(record)
                except Exception:
                    logger.exception(f"Recovery notification failed for {record.symbol}")

        logger.info(
            f"{self.market.value} tick: {report.fetched}/{report.symbols} prices, "
            f"{len(report.alerts)} alerts, {len(report.recoveries)} recoveries"
        )
        return report


class Scheduler:
    """Runs every market's pipeline on a fixed interval, independently."""

    def __init__(
        self,
        pipelines: dict[Market, MarketPipeline],
        clock: Optional[MarketClock] = None,
        tick_seconds: float = 60,
        degraded_after: int = 3,
        housekeeping: Optional[Callable[[datetime], Awaitable[None]]] = None,
        now_fn: Callable[[], datetime] = utcnow,
        status_repo: Optional[MarketStatusRepository] = None,
    ):
        self.pipelines = pipelines
        self.clock = clock or MarketClock()
        self.tick_seconds = tick_seconds
        self.housekeeping = housekeeping
        self.now_fn = now_fn
        self.status_repo = status_repo
        self.status = {
            market: self._initial_status(market, degraded_after) for market in pipelines
        }
        self._tasks: set[asyncio.Task] = set()

    def _initial_status(self, market: Market, degraded_after: int) -> MarketStatus:
        """Carry the failure streak over from the last run of the service."""
        status = MarketStatus(market=market, degraded_after=degraded_after)
        stored = self.status_repo.get(market) if self.status_repo else None
        if stored is not None:
            status.consecutive_failures = stored.consecutive_failures
            status.last_error = stored.last_error
            status.last_success = stored.last_success
            status.last_update_complete = stored.last_update_complete
        return status

    def _persist(self, status: MarketStatus) -> None:
        if self.status_repo is None:
            return
        try:
            self.status_repo.save(status)
        except Exception:
            logger.exception(f"Could not store {status.market.value} pipeline status")

    async def run_market(
        self, market: Market, now: datetime, force: bool = False
    ) -> Optional[TickReport]:
        """
        Run one market's pipeline unless it is closed or already running.

        Returns:
            The tick report, or None when the run was skipped
        """
        status = self.status[market]
        if not force and not self.clock.is_open(market, now):
            logger.debug(f"{market.value} market closed, skipping")
            return None

        # Check-and-set with no await in between
        if status.is_updating:
            status.skipped_ticks += 1
            logger.warning(f"{market.value} update still running, skipping tick")
            return None
        status.is_updating = True

        status.last_update_start = now
        self._persist(status)
        started = time.monotonic()
        report = None
        try:
            report = await self.pipelines[market].run_tick(now)
            status.symbol_count = report.symbols
            if report.total_failure:
                self._record_failure(status, report.failure_reason())
            else:
                status.record_success(now)
        except Exception as e:
            logger.exception(f"{market.value} pipeline failed")
            self._record_failure(status, str(e))
        finally:
            status.is_updating = False
            status.last_update_complete = self.now_fn()
            status.last_update_duration = time.monotonic() - started
            self._persist(status)
        return report

    def _record_failure(self, status: MarketStatus, error: str) -> None:
        status.record_failure(error)
        if status.degraded:
            logger.warning(
                f"{status.market.value} pipeline degraded: "
                f"{status.consecutive_failures} consecutive failures ({error})"
            )

    async def tick(
        self, now: Optional[datetime] = None, force: bool = False
    ) -> dict[Market, Optional[TickReport]]:
        """Run all markets concurrently; one market failing never stops another."""
        now = now or self.now_fn()
        markets = list(self.pipelines)
        results = await asyncio.gather(
            *(self.run_market(market, now, force) for market in markets),
            return_exceptions=True,
        )
        reports = {}
        for market, result in zip(markets, results):
            if isinstance(result, BaseException):
                logger.error(f"{market.value} tick raised: {result}")
                result = None
            reports[market] = result

        if self.housekeeping is not None:
            try:
                await self.housekeeping(now)
            except Exception:
                logger.exception("Housekeeping failed")
        return reports

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Start a tick every ``tick_seconds`` without waiting for the previous
        one, so a slow market overlaps itself and gets skipped by its guard.
        """
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Scheduler started: tick every {self.tick_seconds}s")
        while not stop_event.is_set():
            task = asyncio.create_task(self.tick())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.tick_seconds)
            except asyncio.TimeoutError:
                pass

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Scheduler stopped")
