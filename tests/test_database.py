"""
Database layer tests.
Tests for SQLite connection, schema creation, and CRUD operations.
"""

import sqlite3
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

from crashwatch.database.connection import Database
from crashwatch.database.models import (
    Alert,
    CooldownEntry,
    CooldownState,
    DailySnapshot,
    Market,
    MarketStatus,
    PricePoint,
    RecoveryRecord,
    RecoveryState,
    SymbolType,
    Timeframe,
    WatchlistSymbol,
)
from crashwatch.database.repository import (
    AlertRepository,
    CooldownRepository,
    MarketStatusRepository,
    PriceRepository,
    RecoveryRepository,
    SnapshotRepository,
    WatchlistRepository,
)

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def make_alert(**overrides) -> Alert:
    values = dict(
        symbol="AAPL",
        market=Market.USA,
        threshold=10,
        timeframe=Timeframe.DAY,
        drop_percentage=12.0,
        price=176.0,
        historical_price=200.0,
        timestamp=NOW,
    )
    values.update(overrides)
    return Alert(**values)


class TestDatabaseConnection:
    """Test database connection and initialization."""

    def test_create_in_memory_database(self):
        """Should create an in-memory SQLite database."""
        db = Database(":memory:")
        assert db.connection is not None

    def test_create_file_database(self, tmp_path: Path):
        """Should create a file-based SQLite database, including parent dirs."""
        db_path = tmp_path / "nested" / "test.db"
        db = Database(str(db_path))
        db.initialize()
        assert db_path.exists()
        db.close()

    def test_initialize_schema(self, db):
        """Should create all required tables on initialization."""
        cursor = db.connection.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row[0] for row in cursor.fetchall()}

        expected_tables = {
            "watchlist",
            "price_points",
            "daily_snapshots",
            "alerts",
            "cooldowns",
            "recovery_records",
            "market_status",
        }
        assert expected_tables.issubset(tables)

    def test_initialize_is_idempotent(self, db):
        """Should be safe to initialize twice."""
        db.initialize()

    def test_close_connection(self):
        """Should properly close database connection."""
        db = Database(":memory:")
        db.close()
        with pytest.raises(sqlite3.ProgrammingError):
            db.connection.execute("SELECT 1")


class TestWatchlistRepository:
    """Test watchlist CRUD."""

    @pytest.fixture
    def repo(self, db):
        return WatchlistRepository(db)

    def test_add_and_list_active(self, repo):
        """Should list only active symbols of the requested market."""
        repo.add(WatchlistSymbol("RELIANCE", Market.INDIA, SymbolType.STOCK, "NSE"))
        repo.add(WatchlistSymbol("NIFTY50", Market.INDIA, SymbolType.INDEX, "NSE"))
        repo.add(WatchlistSymbol("AAPL", Market.USA, SymbolType.STOCK, "NASDAQ"))
        repo.add(
            WatchlistSymbol("TCS", Market.INDIA, SymbolType.STOCK, "NSE", active=False)
        )

        india = repo.list_active(Market.INDIA)
        assert [s.symbol for s in india] == ["NIFTY50", "RELIANCE"]

        indices = repo.list_active(Market.INDIA, SymbolType.INDEX)
        assert [s.symbol for s in indices] == ["NIFTY50"]

    def test_add_existing_updates(self, repo):
        """Adding an existing symbol should update it rather than duplicate."""
        repo.add(WatchlistSymbol("AAPL", Market.USA, SymbolType.STOCK, "NASDAQ", active=False))
        saved = repo.add(
            WatchlistSymbol("AAPL", Market.USA, SymbolType.STOCK, "NASDAQ", name="Apple")
        )
        assert saved.active is True
        assert saved.name == "Apple"
        assert repo.counts(Market.USA) == (1, 1)

    def test_set_active_and_counts(self, repo):
        """Should toggle activity and report totals."""
        repo.add(WatchlistSymbol("AAPL", Market.USA, SymbolType.STOCK, "NASDAQ"))
        repo.add(WatchlistSymbol("MSFT", Market.USA, SymbolType.STOCK, "NASDAQ"))

        assert repo.set_active("MSFT", Market.USA, False) is True
        assert repo.set_active("NOPE", Market.USA, False) is False
        assert repo.counts(Market.USA) == (2, 1)
        assert repo.counts(Market.INDIA) == (0, 0)


class TestPriceAndSnapshotRepositories:
    """Test price log and daily snapshots."""

    def test_latest_price(self, db):
        """Should return the newest observation."""
        repo = PriceRepository(db)
        for minutes, price in ((0, 100.0), (1, 101.0), (2, 99.5)):
            repo.append(
                PricePoint("AAPL", Market.USA, price, NOW + timedelta(minutes=minutes), "yahoo")
            )
        latest = repo.latest("AAPL", Market.USA)
        assert latest.price == 99.5
        assert latest.timestamp == NOW + timedelta(minutes=2)
        assert latest.timestamp.tzinfo is not None

    def test_snapshot_upsert_keeps_one_row_per_date(self, db):
        """Upserting the same date should overwrite the close."""
        repo = SnapshotRepository(db)
        day = date(2026, 3, 9)
        repo.upsert(DailySnapshot("AAPL", Market.USA, day, 200.0))
        repo.upsert(DailySnapshot("AAPL", Market.USA, day, 205.0))

        assert repo.count("AAPL", Market.USA) == 1
        assert repo.get("AAPL", Market.USA, day).close_price == 205.0

    def test_closest_on_or_before(self, db):
        """Should pick the latest snapshot inside [earliest, target]."""
        repo = SnapshotRepository(db)
        repo.bulk_upsert(
            [
                DailySnapshot("AAPL", Market.USA, date(2026, 3, 2), 190.0),
                DailySnapshot("AAPL", Market.USA, date(2026, 3, 5), 195.0),
                DailySnapshot("AAPL", Market.USA, date(2026, 3, 9), 200.0),
            ]
        )
        found = repo.closest_on_or_before(
            "AAPL", Market.USA, date(2026, 3, 8), date(2026, 3, 1)
        )
        assert found.date == date(2026, 3, 5)

        missing = repo.closest_on_or_before(
            "AAPL", Market.USA, date(2026, 3, 1), date(2026, 2, 25)
        )
        assert missing is None

    def test_delete_older_than(self, db):
        """Should delete snapshots before the cutoff only."""
        repo = SnapshotRepository(db)
        repo.upsert(DailySnapshot("AAPL", Market.USA, date(2024, 1, 1), 150.0))
        repo.upsert(DailySnapshot("AAPL", Market.USA, date(2026, 3, 9), 200.0))

        assert repo.delete_older_than(date(2025, 2, 1)) == 1
        assert repo.count("AAPL", Market.USA) == 1


class TestAlertRepository:
    """Test alert persistence."""

    def test_create_and_get(self, db):
        """Should persist and reload an alert."""
        repo = AlertRepository(db)
        alert = repo.create(make_alert(critical=False))
        assert alert.id is not None

        loaded = repo.get_by_id(alert.id)
        assert loaded.symbol == "AAPL"
        assert loaded.timeframe is Timeframe.DAY
        assert loaded.timestamp == NOW
        assert loaded.notified is False

    def test_mark_notified(self, db):
        """Should set notified flag and timestamp."""
        repo = AlertRepository(db)
        alert = repo.create(make_alert())
        repo.mark_notified(alert.id, NOW + timedelta(seconds=5))

        loaded = repo.get_by_id(alert.id)
        assert loaded.notified is True
        assert loaded.notified_at == NOW + timedelta(seconds=5)
        assert repo.list_unnotified() == []

    def test_list_recent_and_count(self, db):
        """Should filter by market and time, newest first."""
        repo = AlertRepository(db)
        repo.create(make_alert(timestamp=NOW - timedelta(days=2)))
        repo.create(make_alert(timestamp=NOW, threshold=20, critical=True))
        repo.create(make_alert(symbol="TCS", market=Market.INDIA))

        recent = repo.list_recent(market=Market.USA, since=NOW - timedelta(days=1))
        assert len(recent) == 1
        assert recent[0].critical is True

        assert repo.count(Market.USA) == 2
        assert repo.count(Market.USA, critical_only=True) == 1
        assert repo.count(Market.INDIA) == 1

    def test_list_unnotified_filters(self, db):
        """Unrouted, exhausted and old alerts are not pending."""
        repo = AlertRepository(db)
        pending = repo.create(make_alert())
        unrouted = repo.create(make_alert(threshold=5))
        exhausted = repo.create(make_alert(symbol="MSFT"))
        repo.create(make_alert(symbol="KO", timestamp=NOW - timedelta(days=3)))

        repo.mark_unrouted(unrouted.id)
        assert repo.record_attempt(exhausted.id) == 1
        assert repo.record_attempt(exhausted.id) == 2

        found = repo.list_unnotified(
            Market.USA, since=NOW - timedelta(days=1), max_attempts=2
        )
        assert [a.id for a in found] == [pending.id]
        assert len(repo.list_unnotified()) == 3

    def test_uncommitted_create_rolls_back(self, db):
        """With commit=False the insert is undone by a rollback."""
        repo = AlertRepository(db)
        repo.create(make_alert(), commit=False)
        db.connection.rollback()
        assert repo.count(Market.USA) == 0


class TestCooldownRepository:
    """Test cooldown persistence."""

    def test_save_overwrites_key(self, db):
        """Saving an existing key should update it in place."""
        repo = CooldownRepository(db)
        entry = CooldownEntry(
            "AAPL", Market.USA, 10, Timeframe.DAY, NOW, 200.0
        )
        first = repo.save(entry)
        entry.last_alert_timestamp = NOW + timedelta(days=1)
        second = repo.save(entry)

        assert first.id == second.id
        assert second.last_alert_timestamp == NOW + timedelta(days=1)

    def test_list_active(self, db):
        """Should list only active entries."""
        repo = CooldownRepository(db)
        a = repo.save(CooldownEntry("AAPL", Market.USA, 10, Timeframe.DAY, NOW, 200.0))
        repo.save(CooldownEntry("AAPL", Market.USA, 5, Timeframe.WEEK, NOW, 210.0))
        repo.set_state(a.id, CooldownState.INACTIVE)

        active = repo.list_active(symbol="AAPL", market=Market.USA)
        assert [(e.threshold, e.timeframe) for e in active] == [(5, Timeframe.WEEK)]


class TestRecoveryRepository:
    """Test recovery record persistence."""

    def test_create_update_and_list(self, db):
        """Should round-trip a record through its lifecycle."""
        alert = AlertRepository(db).create(make_alert())
        repo = RecoveryRepository(db)
        record = repo.create(
            RecoveryRecord(
                alert_id=alert.id,
                symbol="AAPL",
                market=Market.USA,
                reference_price=200.0,
                trough_price=176.0,
                opened_at=NOW,
            )
        )
        assert [r.id for r in repo.list_pending(symbol="AAPL")] == [record.id]

        record.state = RecoveryState.RECOVERED
        record.recovery_price = 201.0
        record.recovered_at = NOW + timedelta(days=3)
        repo.update(record)

        assert repo.list_pending() == []
        loaded = repo.get_by_alert_id(alert.id)
        assert loaded.state is RecoveryState.RECOVERED
        assert loaded.recovered_at == NOW + timedelta(days=3)
        assert len(repo.list_since(Market.USA, NOW - timedelta(days=1))) == 1


class TestMarketStatusRepository:
    """Test stored pipeline health."""

    def test_save_and_get(self, db):
        """Should upsert one row per market."""
        repo = MarketStatusRepository(db)
        assert repo.get(Market.USA) is None

        status = MarketStatus(market=Market.USA, degraded_after=2)
        status.record_failure("HTTP 503")
        status.last_update_complete = NOW
        repo.save(status)
        status.record_failure("HTTP 504")
        repo.save(status)

        loaded = repo.get(Market.USA)
        assert loaded.consecutive_failures == 2
        assert loaded.degraded is True
        assert loaded.last_error == "HTTP 504"
        assert loaded.last_update_complete == NOW
        assert repo.get(Market.INDIA) is None
