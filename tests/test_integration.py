"""
Integration tests.
End-to-end ticks through fetch, store, detect, cooldown, and dispatch.
"""

import asyncio
import sqlite3
from datetime import date, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from crashwatch.data.fetcher import PriceFetcher
from crashwatch.database.models import (
    DailySnapshot,
    Market,
    SymbolType,
    Timeframe,
    WatchlistSymbol,
)
from crashwatch.healthcheck import COLOR_DEGRADED, build_payload
from crashwatch.main import CrashwatchApp
from crashwatch.reports import system_status


@pytest.fixture
def nse(make_source):
    return make_source("nse")


@pytest.fixture
def yahoo(make_source):
    return make_source("yahoo", {"AAPL": 176.0})


@pytest.fixture
def notifier(make_notifier):
    return make_notifier()


@pytest.fixture
def app(db, nse, yahoo, notifier):
    fetcher = PriceFetcher(sources={"nse": nse, "yahoo": yahoo}, timeout=1.0)
    app = CrashwatchApp(db=db, fetcher=fetcher, notifiers=[notifier])
    app.watchlist_repo.add(WatchlistSymbol("TCS", Market.INDIA, SymbolType.STOCK, "NSE"))
    app.watchlist_repo.add(WatchlistSymbol("AAPL", Market.USA, SymbolType.STOCK, "NASDAQ"))
    return app


def seed_snapshot(app, symbol, market, day, price):
    app.store.snapshots.upsert(DailySnapshot(symbol, market, day, price))


class TestMarketIndependence:
    """One market's trouble never blocks the other."""

    @pytest.mark.asyncio
    async def test_india_failure_does_not_block_usa(self, app, usa_now):
        """INDIA fetches all fail while USA prices are stored."""
        reports = await app.scheduler.tick(usa_now, force=True)

        assert reports[Market.INDIA].fetched == 0
        assert reports[Market.USA].fetched == 1
        assert app.store.prices.count(Market.INDIA) == 0
        assert app.store.prices.count(Market.USA) == 1

        status = app.scheduler.status
        assert status[Market.INDIA].consecutive_failures == 1
        assert status[Market.USA].consecutive_failures == 0
        assert status[Market.USA].last_success == usa_now

    @pytest.mark.asyncio
    async def test_closed_market_is_skipped(self, app, usa_now):
        """Without force, only the open market runs."""
        reports = await app.scheduler.tick(usa_now)

        assert reports[Market.INDIA] is None
        assert reports[Market.USA] is not None
        assert app.scheduler.status[Market.INDIA].consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_pipeline_exception_is_contained(self, app, usa_now):
        """A crashing pipeline marks its own market failed only."""
        usa_pipeline = app.scheduler.pipelines[Market.USA]
        with patch.object(
            usa_pipeline, "run_tick", AsyncMock(side_effect=RuntimeError("disk full"))
        ):
            reports = await app.scheduler.tick(usa_now, force=True)

        assert reports[Market.USA] is None
        assert reports[Market.INDIA] is not None
        status = app.scheduler.status[Market.USA]
        assert status.consecutive_failures == 1
        assert status.last_error == "disk full"
        assert status.is_updating is False


class TestAlertFlow:
    """Detection, cooldown, and notification across ticks."""

    @pytest.mark.asyncio
    async def test_alert_then_cooldown(self, app, yahoo, notifier, usa_now):
        """A repeated drop on the next tick is suppressed."""
        seed_snapshot(app, "AAPL", Market.USA, date(2026, 3, 9), 200.0)

        first = await app.scheduler.tick(usa_now, force=True)
        yahoo.prices["AAPL"] = 175.0
        second = await app.scheduler.tick(usa_now + timedelta(minutes=1), force=True)

        alerts = first[Market.USA].alerts
        assert len(alerts) == 1
        assert alerts[0].threshold == 10
        assert alerts[0].timeframe is Timeframe.DAY
        assert alerts[0].critical is False
        assert second[Market.USA].alerts == []

        assert len(notifier.sent) == 1
        assert notifier.sent[0].subject.startswith("[MEDIUM] USA Market Crash Alert: AAPL")
        assert app.alert_repo.get_by_id(alerts[0].id).notified is True
        assert app.alert_repo.count(Market.USA) == 1

    @pytest.mark.asyncio
    async def test_month_alert_without_year_history(self, app, notifier, usa_now):
        """Missing year history does not stop the month timeframe."""
        seed_snapshot(app, "AAPL", Market.USA, date(2026, 2, 6), 250.0)

        reports = await app.scheduler.tick(usa_now, force=True)

        alerts = reports[Market.USA].alerts
        assert [(a.timeframe, a.threshold, a.critical) for a in alerts] == [
            (Timeframe.MONTH, 20, True)
        ]
        assert notifier.sent[0].critical is True

    @pytest.mark.asyncio
    async def test_recovery_notification(self, app, yahoo, notifier, usa_now):
        """Regaining the reference price announces a recovery."""
        seed_snapshot(app, "AAPL", Market.USA, date(2026, 3, 9), 200.0)

        await app.scheduler.tick(usa_now, force=True)
        yahoo.prices["AAPL"] = 201.0
        reports = await app.scheduler.tick(usa_now + timedelta(hours=2), force=True)

        assert len(reports[Market.USA].recoveries) == 1
        assert [m.kind for m in notifier.sent] == ["alert", "recovery"]
        assert app.ledger.active_entries(Market.USA) == []

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(self, db, nse, yahoo, notifier, usa_now):
        """Dry-run marks alerts notified without contacting channels."""
        fetcher = PriceFetcher(sources={"nse": nse, "yahoo": yahoo})
        app = CrashwatchApp(db=db, fetcher=fetcher, notifiers=[notifier], dry_run=True)
        app.watchlist_repo.add(WatchlistSymbol("AAPL", Market.USA, SymbolType.STOCK, "NASDAQ"))
        seed_snapshot(app, "AAPL", Market.USA, date(2026, 3, 9), 200.0)

        reports = await app.scheduler.tick(usa_now, force=True)

        assert len(reports[Market.USA].alerts) == 1
        assert notifier.sent == []
        assert app.alert_repo.list_unnotified() == []

    @pytest.mark.asyncio
    async def test_failed_alert_write_releases_cooldown(self, app, notifier, usa_now):
        """If the alert cannot be stored, its cooldown is not kept either."""
        seed_snapshot(app, "AAPL", Market.USA, date(2026, 3, 9), 200.0)
        failing = patch.object(
            app.alert_repo, "create", side_effect=sqlite3.OperationalError("database is locked")
        )

        with failing:
            first = await app.scheduler.tick(usa_now, force=True)
        assert app.ledger.active_entries(Market.USA) == []
        second = await app.scheduler.tick(usa_now + timedelta(minutes=1), force=True)

        assert first[Market.USA].alerts == []
        assert "database is locked" in first[Market.USA].errors[0]
        assert [a.threshold for a in second[Market.USA].alerts] == [10]
        assert app.alert_repo.count(Market.USA) == 1
        assert len(app.ledger.active_entries(Market.USA)) == 1
        assert len(notifier.sent) == 1


class TestSchedulerHealth:
    """Overlap guard and degradation tracking."""

    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self, app, yahoo, usa_now):
        """A second run while one is in progress is skipped."""
        yahoo.delay = 0.05

        first, second = await asyncio.gather(
            app.scheduler.run_market(Market.USA, usa_now, force=True),
            app.scheduler.run_market(Market.USA, usa_now, force=True),
        )

        assert first is not None
        assert second is None
        status = app.scheduler.status[Market.USA]
        assert status.skipped_ticks == 1
        assert status.is_updating is False
        assert status.last_update_duration is not None

    @pytest.mark.asyncio
    async def test_degraded_after_repeated_failures(self, app, nse, usa_now):
        """Three failed ticks degrade a market; a success clears it."""
        for minute in range(3):
            await app.scheduler.run_market(
                Market.INDIA, usa_now + timedelta(minutes=minute), force=True
            )

        status = app.scheduler.status[Market.INDIA]
        assert status.consecutive_failures == 3
        assert status.degraded is True
        assert "TCS" in status.last_error

        nse.prices["TCS"] = 4000.0
        await app.scheduler.run_market(Market.INDIA, usa_now + timedelta(minutes=3), force=True)

        assert status.degraded is False
        assert status.last_error is None
        assert status.symbol_count == 1

    @pytest.mark.asyncio
    async def test_run_once_uses_clock(self, app, usa_now):
        """run_once ticks with the app's time source."""
        app.scheduler.now_fn = lambda: usa_now

        reports = await app.run_once()

        assert reports[Market.INDIA] is None
        assert reports[Market.USA].fetched == 1

    @pytest.mark.asyncio
    async def test_processing_failures_count_as_failed_tick(self, app, usa_now):
        """Prices that are fetched but cannot be stored still fail the tick."""
        with patch.object(
            app.store, "record", side_effect=sqlite3.OperationalError("disk I/O error")
        ):
            report = await app.scheduler.run_market(Market.USA, usa_now, force=True)

        assert report.fetched == 1
        assert report.processed == 0
        status = app.scheduler.status[Market.USA]
        assert status.consecutive_failures == 1
        assert "could be processed" in status.last_error
        assert "disk I/O error" in status.last_error

    @pytest.mark.asyncio
    async def test_degraded_status_is_visible_outside_the_service(
        self, db, app, make_source, notifier, usa_now
    ):
        """Status read from the database matches the running scheduler."""
        for minute in range(3):
            await app.scheduler.run_market(
                Market.INDIA, usa_now + timedelta(minutes=minute), force=True
            )

        pipeline = system_status(db, Market.INDIA, usa_now)["pipeline"]
        assert pipeline["degraded"] is True
        assert pipeline["consecutive_failures"] == 3
        assert "TCS" in pipeline["last_error"]
        assert pipeline["is_updating"] is False
        assert system_status(db, Market.USA, usa_now)["pipeline"]["degraded"] is False

        embed = build_payload(db, usa_now)["embeds"][0]
        assert embed["color"] == COLOR_DEGRADED
        assert "INDIA" in embed["description"]

        fetcher = PriceFetcher(sources={"nse": make_source("nse"), "yahoo": make_source("yahoo")})
        restarted = CrashwatchApp(db=db, fetcher=fetcher, notifiers=[notifier])
        assert restarted.scheduler.status[Market.INDIA].consecutive_failures == 3
        assert restarted.scheduler.status[Market.INDIA].degraded is True
