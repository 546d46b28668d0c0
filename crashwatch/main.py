"""
Main application entry point.
"""

import asyncio
import logging
import signal
from datetime import datetime, timedelta
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from crashwatch.config import AppConfig, parse_time_of_day
from crashwatch.data.fetcher import PriceFetcher, parse_chain_overrides
from crashwatch.data.history import HistoricalPriceResolver, SnapshotBackfiller
from crashwatch.data.store import PriceStore
from crashwatch.database.connection import Database
from crashwatch.database.models import Market
from crashwatch.database.repository import (
    AlertRepository,
    CooldownRepository,
    MarketStatusRepository,
    RecoveryRepository,
    WatchlistRepository,
)
from crashwatch.markets import DEFAULT_MARKET_HOURS, MarketClock, MarketHours
from crashwatch.notifiers.base import Notifier, NotifierFactory
from crashwatch.notifiers.dispatcher import NotificationDispatcher
from crashwatch.rules.cooldown import CooldownLedger
from crashwatch.rules.engine import DropDetector
from crashwatch.rules.recovery import RecoveryTracker
from crashwatch.rules.types import ThresholdLadder
from crashwatch.scheduler import MarketPipeline, Scheduler, utcnow

logger = logging.getLogger(__name__)


def build_clock(config: AppConfig) -> MarketClock:
    """Market clock with any per-market hour overrides applied."""
    hours = {}
    for name, override in config.markets.items():
        market = Market.parse(name)
        base = DEFAULT_MARKET_HOURS[market]
        hours[market] = MarketHours(
            market=market,
            timezone=override.timezone or base.timezone,
            open_time=parse_time_of_day(override.open) if override.open else base.open_time,
            close_time=(
                parse_time_of_day(override.close) if override.close else base.close_time
            ),
        )
    return MarketClock(hours)


def enabled_markets(config: AppConfig) -> list[Market]:
    markets = []
    for market in Market:
        override = config.markets.get(market.value)
        if override is None or override.enabled:
            markets.append(market)
    return markets


class CrashwatchApp:
    """Wires the monitoring components together from configuration."""

    def __init__(
        self,
        db: Database,
        config: Optional[AppConfig] = None,
        fetcher: Optional[PriceFetcher] = None,
        notifiers: Optional[list[Notifier]] = None,
        clock: Optional[MarketClock] = None,
        dry_run: bool = False,
        now_fn=utcnow,
    ):
        """
        Initialize the app.

        Args:
            db: Database instance (already initialized)
            config: Application configuration, defaults when omitted
            fetcher: Price fetcher, built from config when omitted
            notifiers: Notification channels, built from config when omitted
            clock: Market clock, built from config when omitted
            dry_run: Log notifications instead of sending them
            now_fn: Source of the current time
        """
        self.db = db
        self.config = config or AppConfig()
        self.clock = clock or build_clock(self.config)

        # Initialize repositories
        self.watchlist_repo = WatchlistRepository(db)
        self.alert_repo = AlertRepository(db)
        self.cooldown_repo = CooldownRepository(db)
        self.recovery_repo = RecoveryRepository(db)
        self.status_repo = MarketStatusRepository(db)

        # Initialize services
        sources = self.config.sources
        self.fetcher = fetcher or PriceFetcher(
            chains=parse_chain_overrides(sources.chains),
            timeout=sources.timeout_seconds,
            max_concurrency=sources.max_concurrency,
        )
        self.store = PriceStore(db, self.clock)
        self.resolver = HistoricalPriceResolver(self.store.snapshots, self.clock)
        self.backfiller = SnapshotBackfiller(self.store.snapshots)
        self.detector = DropDetector(
            ThresholdLadder(
                self.config.alerts.thresholds, self.config.alerts.critical_threshold
            )
        )
        self.ledger = CooldownLedger(
            self.cooldown_repo,
            release=self.config.cooldown.release,
            duration=timedelta(hours=self.config.cooldown.hours),
        )
        self.tracker = RecoveryTracker(
            self.recovery_repo,
            fraction=self.config.recovery.fraction,
            horizon=timedelta(days=self.config.recovery.horizon_days),
        )
        if notifiers is None:
            notifiers = NotifierFactory.from_config(self.config.notifications)
        self.dispatcher = NotificationDispatcher(
            self.alert_repo,
            notifiers,
            recoveries=self.recovery_repo,
            clock=self.clock,
            dry_run=dry_run,
        )

        pipelines = {
            market: MarketPipeline(
                market=market,
                watchlist=self.watchlist_repo,
                fetcher=self.fetcher,
                store=self.store,
                resolver=self.resolver,
                detector=self.detector,
                ledger=self.ledger,
                tracker=self.tracker,
                alerts=self.alert_repo,
                dispatcher=self.dispatcher,
                notify_recoveries=self.config.notifications.notify_recoveries,
            )
            for market in enabled_markets(self.config)
        }
        self.scheduler = Scheduler(
            pipelines,
            clock=self.clock,
            tick_seconds=self.config.schedule.tick_seconds,
            degraded_after=self.config.schedule.degraded_after,
            housekeeping=self.housekeeping,
            now_fn=now_fn,
            status_repo=self.status_repo,
        )
        self._last_prune: Optional[datetime] = None

    async def housekeeping(self, now: datetime) -> None:
        """Periodic sweeps that do not belong to any one market's tick."""
        self.ledger.release_expired(now)
        self.tracker.expire_stale(now)
        await self.dispatcher.retry_pending(now=now)

        # Snapshot retention runs at most once a day
        if self._last_prune is None or now - self._last_prune >= timedelta(days=1):
            self.backfiller.prune(
                now.date(), self.config.advanced.snapshot_retention_days
            )
            self._last_prune = now

    async def run_once(self, force: bool = False):
        """Run a single tick for every market."""
        return await self.scheduler.tick(force=force)

    async def run_forever(self) -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Not supported on Windows event loops
                pass
        await self.scheduler.run_forever(stop_event)


def main():
    """Service entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Crashwatch price-drop monitor")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--once", action="store_true", help="Run a single tick and exit"
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="With --once, run even if markets are closed",
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Run without sending notifications"
    )

    args = parser.parse_args()

    from crashwatch.config import load_config

    config = load_config(args.config)

    # Setup logging
    log_level = logging.DEBUG if args.debug else getattr(
        logging, config.advanced.log_level.upper(), logging.INFO
    )
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Initialize database
    db = Database(config.database.path)
    db.initialize()

    app = CrashwatchApp(db=db, config=config, dry_run=args.dry_run)

    if args.dry_run:
        logger.info("Dry run mode - no notifications will be sent")

    try:
        if args.once:
            reports = asyncio.run(app.run_once(force=args.force))
            for market, report in reports.items():
                if report is None:
                    logger.info(f"{market.value}: skipped")
        else:
            asyncio.run(app.run_forever())
    finally:
        db.close()


if __name__ == "__main__":
    main()
