"""
Repository classes for CRUD operations.
"""

from datetime import date, datetime, timezone
from typing import Optional

from .connection import Database
from .models import (
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


def _to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Store timestamps as UTC ISO-8601 so string comparison orders them."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_db_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class WatchlistRepository:
    """CRUD operations for the monitored symbol list."""

    def __init__(self, db: Database):
        self.db = db

    def add(self, item: WatchlistSymbol) -> WatchlistSymbol:
        """Add a symbol, or reactivate and update it if already present."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO watchlist (symbol, market, type, exchange, name, active)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(symbol, market) DO UPDATE SET
                type = excluded.type,
                exchange = excluded.exchange,
                name = excluded.name,
                active = excluded.active
            """,
            (
                item.symbol,
                item.market.value,
                item.type.value,
                item.exchange,
                item.name,
                1 if item.active else 0,
            ),
        )
        self.db.connection.commit()
        return self.get(item.symbol, item.market)

    def get(self, symbol: str, market: Market) -> Optional[WatchlistSymbol]:
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM watchlist WHERE symbol = ? AND market = ?",
            (symbol, market.value),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_symbol(row)

    def set_active(self, symbol: str, market: Market, active: bool) -> bool:
        """Toggle a symbol. Returns False if it is not on the watchlist."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "UPDATE watchlist SET active = ? WHERE symbol = ? AND market = ?",
            (1 if active else 0, symbol, market.value),
        )
        self.db.connection.commit()
        return cursor.rowcount > 0

    def remove(self, symbol: str, market: Market) -> None:
        cursor = self.db.connection.cursor()
        cursor.execute(
            "DELETE FROM watchlist WHERE symbol = ? AND market = ?",
            (symbol, market.value),
        )
        self.db.connection.commit()

    def list_active(
        self, market: Market, symbol_type: Optional[SymbolType] = None
    ) -> list[WatchlistSymbol]:
        """Active symbols for one market, optionally narrowed to one type."""
        cursor = self.db.connection.cursor()
        if symbol_type is None:
            cursor.execute(
                """
                SELECT * FROM watchlist
                WHERE market = ? AND active = 1
                ORDER BY symbol
                """,
                (market.value,),
            )
        else:
            cursor.execute(
                """
                SELECT * FROM watchlist
                WHERE market = ? AND type = ? AND active = 1
                ORDER BY symbol
                """,
                (market.value, symbol_type.value),
            )
        return [self._row_to_symbol(row) for row in cursor.fetchall()]

    def list_all(self, market: Optional[Market] = None) -> list[WatchlistSymbol]:
        cursor = self.db.connection.cursor()
        if market is None:
            cursor.execute("SELECT * FROM watchlist ORDER BY market, symbol")
        else:
            cursor.execute(
                "SELECT * FROM watchlist WHERE market = ? ORDER BY symbol",
                (market.value,),
            )
        return [self._row_to_symbol(row) for row in cursor.fetchall()]

    def counts(self, market: Market) -> tuple[int, int]:
        """Return (total, active) symbol counts for a market."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT COUNT(*) AS total, COALESCE(SUM(active), 0) AS active
            FROM watchlist WHERE market = ?
            """,
            (market.value,),
        )
        row = cursor.fetchone()
        return row["total"], row["active"]

    def _row_to_symbol(self, row) -> WatchlistSymbol:
        """Convert database row to WatchlistSymbol."""
        return WatchlistSymbol(
            id=row["id"],
            symbol=row["symbol"],
            market=Market(row["market"]),
            type=SymbolType(row["type"]),
            exchange=row["exchange"],
            name=row["name"],
            active=bool(row["active"]),
        )


class PriceRepository:
    """Append-only storage for price observations."""

    def __init__(self, db: Database):
        self.db = db

    def append(self, point: PricePoint, commit: bool = True) -> None:
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO price_points (symbol, market, price, timestamp, source)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                point.symbol,
                point.market.value,
                point.price,
                _to_db_time(point.timestamp),
                point.source,
            ),
        )
        if commit:
            self.db.connection.commit()

    def latest(self, symbol: str, market: Market) -> Optional[PricePoint]:
        """Most recent observation for a symbol."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM price_points
            WHERE symbol = ? AND market = ?
            ORDER BY timestamp DESC, id DESC
            LIMIT 1
            """,
            (symbol, market.value),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_point(row)

    def list_since(
        self, symbol: str, market: Market, since: datetime
    ) -> list[PricePoint]:
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM price_points
            WHERE symbol = ? AND market = ? AND timestamp >= ?
            ORDER BY timestamp, id
            """,
            (symbol, market.value, _to_db_time(since)),
        )
        return [self._row_to_point(row) for row in cursor.fetchall()]

    def count(self, market: Market) -> int:
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT COUNT(*) FROM price_points WHERE market = ?", (market.value,)
        )
        return cursor.fetchone()[0]

    def _row_to_point(self, row) -> PricePoint:
        return PricePoint(
            symbol=row["symbol"],
            market=Market(row["market"]),
            price=row["price"],
            timestamp=_from_db_time(row["timestamp"]),
            source=row["source"],
        )


class SnapshotRepository:
    """One closing price per (symbol, market, trading date)."""

    def __init__(self, db: Database):
        self.db = db

    def upsert(self, snapshot: DailySnapshot, commit: bool = True) -> None:
        """Insert the snapshot or overwrite the close for that date."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO daily_snapshots (symbol, market, date, close_price)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(symbol, market, date) DO UPDATE SET
                close_price = excluded.close_price,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                snapshot.symbol,
                snapshot.market.value,
                snapshot.date.isoformat(),
                snapshot.close_price,
            ),
        )
        if commit:
            self.db.connection.commit()

    def bulk_upsert(self, snapshots: list[DailySnapshot]) -> None:
        """Bulk upsert multiple snapshots."""
        cursor = self.db.connection.cursor()
        cursor.executemany(
            """
            INSERT INTO daily_snapshots (symbol, market, date, close_price)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(symbol, market, date) DO UPDATE SET
                close_price = excluded.close_price,
                updated_at = CURRENT_TIMESTAMP
            """,
            [
                (s.symbol, s.market.value, s.date.isoformat(), s.close_price)
                for s in snapshots
            ],
        )
        self.db.connection.commit()

    def get(self, symbol: str, market: Market, day: date) -> Optional[DailySnapshot]:
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM daily_snapshots
            WHERE symbol = ? AND market = ? AND date = ?
            """,
            (symbol, market.value, day.isoformat()),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_snapshot(row)

    def closest_on_or_before(
        self, symbol: str, market: Market, target: date, earliest: date
    ) -> Optional[DailySnapshot]:
        """Latest snapshot dated within [earliest, target]."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM daily_snapshots
            WHERE symbol = ? AND market = ? AND date <= ? AND date >= ?
            ORDER BY date DESC
            LIMIT 1
            """,
            (symbol, market.value, target.isoformat(), earliest.isoformat()),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_snapshot(row)

    def count(self, symbol: str, market: Market) -> int:
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT COUNT(*) FROM daily_snapshots WHERE symbol = ? AND market = ?",
            (symbol, market.value),
        )
        return cursor.fetchone()[0]

    def delete_older_than(self, cutoff: date) -> int:
        """Drop snapshots dated before ``cutoff``. Returns rows deleted."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "DELETE FROM daily_snapshots WHERE date < ?", (cutoff.isoformat(),)
        )
        self.db.connection.commit()
        return cursor.rowcount

    def _row_to_snapshot(self, row) -> DailySnapshot:
        return DailySnapshot(
            symbol=row["symbol"],
            market=Market(row["market"]),
            date=date.fromisoformat(row["date"]),
            close_price=row["close_price"],
        )


class AlertRepository:
    """CRUD operations for raised alerts."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, alert: Alert, commit: bool = True) -> Alert:
        """Persist a new alert."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO alerts
            (symbol, market, threshold, timeframe, drop_percentage, price,
             historical_price, timestamp, critical, notified, notified_at,
             delivery_attempts, unrouted)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.symbol,
                alert.market.value,
                alert.threshold,
                alert.timeframe.value,
                alert.drop_percentage,
                alert.price,
                alert.historical_price,
                _to_db_time(alert.timestamp),
                1 if alert.critical else 0,
                1 if alert.notified else 0,
                _to_db_time(alert.notified_at),
                alert.delivery_attempts,
                1 if alert.unrouted else 0,
            ),
        )
        if commit:
            self.db.connection.commit()
        alert.id = cursor.lastrowid
        return alert

    def get_by_id(self, alert_id: int) -> Optional[Alert]:
        """Get alert by ID."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM alerts WHERE id = ?", (alert_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_alert(row)

    def mark_notified(self, alert_id: int, when: datetime) -> None:
        """Mark alert as notified."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            UPDATE alerts
            SET notified = 1, notified_at = ?
            WHERE id = ?
            """,
            (_to_db_time(when), alert_id),
        )
        self.db.connection.commit()

    def list_recent(
        self,
        market: Optional[Market] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
    ) -> list[Alert]:
        """Newest alerts first, optionally scoped to a market and start time."""
        clauses = []
        params: list = []
        if market is not None:
            clauses.append("market = ?")
            params.append(market.value)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(_to_db_time(since))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        cursor = self.db.connection.cursor()
        cursor.execute(
            f"""
            SELECT * FROM alerts
            {where}
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            params,
        )
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def mark_unrouted(self, alert_id: int) -> None:
        """Record that no channel accepts the alert so it is never retried."""
        cursor = self.db.connection.cursor()
        cursor.execute("UPDATE alerts SET unrouted = 1 WHERE id = ?", (alert_id,))
        self.db.connection.commit()

    def record_attempt(self, alert_id: int) -> int:
        """Count a failed delivery. Returns the new attempt count."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "UPDATE alerts SET delivery_attempts = delivery_attempts + 1 WHERE id = ?",
            (alert_id,),
        )
        self.db.connection.commit()
        cursor.execute("SELECT delivery_attempts FROM alerts WHERE id = ?", (alert_id,))
        row = cursor.fetchone()
        return row[0] if row else 0

    def list_unnotified(
        self,
        market: Optional[Market] = None,
        since: Optional[datetime] = None,
        max_attempts: Optional[int] = None,
    ) -> list[Alert]:
        """Alerts still awaiting delivery, oldest first. Unrouted alerts are excluded."""
        query = "SELECT * FROM alerts WHERE notified = 0 AND unrouted = 0"
        params: list = []
        if market is not None:
            query += " AND market = ?"
            params.append(market.value)
        if since is not None:
            query += " AND timestamp >= ?"
            params.append(_to_db_time(since))
        if max_attempts is not None:
            query += " AND delivery_attempts < ?"
            params.append(max_attempts)
        cursor = self.db.connection.cursor()
        cursor.execute(query + " ORDER BY timestamp, id", params)
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def list_for_symbol_since(
        self, symbol: str, market: Market, since: datetime
    ) -> list[Alert]:
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM alerts
            WHERE symbol = ? AND market = ? AND timestamp >= ?
            ORDER BY timestamp DESC, id DESC
            """,
            (symbol, market.value, _to_db_time(since)),
        )
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def count(
        self,
        market: Market,
        since: Optional[datetime] = None,
        critical_only: bool = False,
    ) -> int:
        query = "SELECT COUNT(*) FROM alerts WHERE market = ?"
        params: list = [market.value]
        if since is not None:
            query += " AND timestamp >= ?"
            params.append(_to_db_time(since))
        if critical_only:
            query += " AND critical = 1"
        cursor = self.db.connection.cursor()
        cursor.execute(query, params)
        return cursor.fetchone()[0]

    def _row_to_alert(self, row) -> Alert:
        """Convert database row to Alert."""
        return Alert(
            id=row["id"],
            symbol=row["symbol"],
            market=Market(row["market"]),
            threshold=row["threshold"],
            timeframe=Timeframe(row["timeframe"]),
            drop_percentage=row["drop_percentage"],
            price=row["price"],
            historical_price=row["historical_price"],
            timestamp=_from_db_time(row["timestamp"]),
            critical=bool(row["critical"]),
            notified=bool(row["notified"]),
            notified_at=_from_db_time(row["notified_at"]),
            delivery_attempts=row["delivery_attempts"],
            unrouted=bool(row["unrouted"]),
        )


class CooldownRepository:
    """Persistence for cooldown ledger entries."""

    def __init__(self, db: Database):
        self.db = db

    def get(
        self, symbol: str, market: Market, threshold: int, timeframe: Timeframe
    ) -> Optional[CooldownEntry]:
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM cooldowns
            WHERE symbol = ? AND market = ? AND threshold = ? AND timeframe = ?
            """,
            (symbol, market.value, threshold, timeframe.value),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_entry(row)

    def save(self, entry: CooldownEntry, commit: bool = True) -> CooldownEntry:
        """Create the entry or overwrite the existing one for its key."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO cooldowns
            (symbol, market, threshold, timeframe, last_alert_timestamp,
             reference_price, state)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(symbol, market, threshold, timeframe) DO UPDATE SET
                last_alert_timestamp = excluded.last_alert_timestamp,
                reference_price = excluded.reference_price,
                state = excluded.state
            """,
            (
                entry.symbol,
                entry.market.value,
                entry.threshold,
                entry.timeframe.value,
                _to_db_time(entry.last_alert_timestamp),
                entry.reference_price,
                entry.state.value,
            ),
        )
        if commit:
            self.db.connection.commit()
        return self.get(entry.symbol, entry.market, entry.threshold, entry.timeframe)

    def set_state(self, entry_id: int, state: CooldownState) -> None:
        cursor = self.db.connection.cursor()
        cursor.execute(
            "UPDATE cooldowns SET state = ? WHERE id = ?", (state.value, entry_id)
        )
        self.db.connection.commit()

    def list_active(
        self, symbol: Optional[str] = None, market: Optional[Market] = None
    ) -> list[CooldownEntry]:
        query = "SELECT * FROM cooldowns WHERE state = ?"
        params: list = [CooldownState.ACTIVE.value]
        if symbol is not None:
            query += " AND symbol = ?"
            params.append(symbol)
        if market is not None:
            query += " AND market = ?"
            params.append(market.value)
        cursor = self.db.connection.cursor()
        cursor.execute(query + " ORDER BY id", params)
        return [self._row_to_entry(row) for row in cursor.fetchall()]

    def _row_to_entry(self, row) -> CooldownEntry:
        return CooldownEntry(
            id=row["id"],
            symbol=row["symbol"],
            market=Market(row["market"]),
            threshold=row["threshold"],
            timeframe=Timeframe(row["timeframe"]),
            last_alert_timestamp=_from_db_time(row["last_alert_timestamp"]),
            reference_price=row["reference_price"],
            state=CooldownState(row["state"]),
        )


class RecoveryRepository:
    """Persistence for post-alert recovery records."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, record: RecoveryRecord, commit: bool = True) -> RecoveryRecord:
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO recovery_records
            (alert_id, symbol, market, reference_price, trough_price, opened_at,
             state, recovery_price, recovered_at, recovery_percent,
             duration_seconds, notified)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.alert_id,
                record.symbol,
                record.market.value,
                record.reference_price,
                record.trough_price,
                _to_db_time(record.opened_at),
                record.state.value,
                record.recovery_price,
                _to_db_time(record.recovered_at),
                record.recovery_percent,
                record.duration_seconds,
                1 if record.notified else 0,
            ),
        )
        if commit:
            self.db.connection.commit()
        record.id = cursor.lastrowid
        return record

    def update(self, record: RecoveryRecord) -> None:
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            UPDATE recovery_records
            SET trough_price = ?, state = ?, recovery_price = ?,
                recovered_at = ?, recovery_percent = ?, duration_seconds = ?,
                notified = ?
            WHERE id = ?
            """,
            (
                record.trough_price,
                record.state.value,
                record.recovery_price,
                _to_db_time(record.recovered_at),
                record.recovery_percent,
                record.duration_seconds,
                1 if record.notified else 0,
                record.id,
            ),
        )
        self.db.connection.commit()

    def get_by_alert_id(self, alert_id: int) -> Optional[RecoveryRecord]:
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM recovery_records WHERE alert_id = ?", (alert_id,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def list_pending(
        self, symbol: Optional[str] = None, market: Optional[Market] = None
    ) -> list[RecoveryRecord]:
        query = "SELECT * FROM recovery_records WHERE state = ?"
        params: list = [RecoveryState.PENDING.value]
        if symbol is not None:
            query += " AND symbol = ?"
            params.append(symbol)
        if market is not None:
            query += " AND market = ?"
            params.append(market.value)
        cursor = self.db.connection.cursor()
        cursor.execute(query + " ORDER BY opened_at, id", params)
        return [self._row_to_record(row) for row in cursor.fetchall()]

    def list_since(self, market: Market, since: datetime) -> list[RecoveryRecord]:
        """Records opened at or after ``since`` in one market."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM recovery_records
            WHERE market = ? AND opened_at >= ?
            ORDER BY opened_at, id
            """,
            (market.value, _to_db_time(since)),
        )
        return [self._row_to_record(row) for row in cursor.fetchall()]

    def _row_to_record(self, row) -> RecoveryRecord:
        return RecoveryRecord(
            id=row["id"],
            alert_id=row["alert_id"],
            symbol=row["symbol"],
            market=Market(row["market"]),
            reference_price=row["reference_price"],
            trough_price=row["trough_price"],
            opened_at=_from_db_time(row["opened_at"]),
            state=RecoveryState(row["state"]),
            recovery_price=row["recovery_price"],
            recovered_at=_from_db_time(row["recovered_at"]),
            recovery_percent=row["recovery_percent"],
            duration_seconds=row["duration_seconds"],
            notified=bool(row["notified"]),
        )


class MarketStatusRepository:
    """Last recorded pipeline health per market."""

    def __init__(self, db: Database):
        self.db = db

    def save(self, status: MarketStatus) -> None:
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO market_status
            (market, degraded_after, is_updating, consecutive_failures, last_error,
             last_update_start, last_update_complete, last_update_duration,
             last_success, symbol_count, skipped_ticks)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(market) DO UPDATE SET
                degraded_after = excluded.degraded_after,
                is_updating = excluded.is_updating,
                consecutive_failures = excluded.consecutive_failures,
                last_error = excluded.last_error,
                last_update_start = excluded.last_update_start,
                last_update_complete = excluded.last_update_complete,
                last_update_duration = excluded.last_update_duration,
                last_success = excluded.last_success,
                symbol_count = excluded.symbol_count,
                skipped_ticks = excluded.skipped_ticks
            """,
            (
                status.market.value,
                status.degraded_after,
                1 if status.is_updating else 0,
                status.consecutive_failures,
                status.last_error,
                _to_db_time(status.last_update_start),
                _to_db_time(status.last_update_complete),
                status.last_update_duration,
                _to_db_time(status.last_success),
                status.symbol_count,
                status.skipped_ticks,
            ),
        )
        self.db.connection.commit()

    def get(self, market: Market) -> Optional[MarketStatus]:
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM market_status WHERE market = ?", (market.value,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_status(row)

    def _row_to_status(self, row) -> MarketStatus:
        return MarketStatus(
            market=Market(row["market"]),
            degraded_after=row["degraded_after"],
            is_updating=bool(row["is_updating"]),
            consecutive_failures=row["consecutive_failures"],
            last_error=row["last_error"],
            last_update_start=_from_db_time(row["last_update_start"]),
            last_update_complete=_from_db_time(row["last_update_complete"]),
            last_update_duration=row["last_update_duration"],
            last_success=_from_db_time(row["last_success"]),
            symbol_count=row["symbol_count"],
            skipped_ticks=row["skipped_ticks"],
        )
