"""
SQLite database connection and schema management.
"""

import sqlite3
from pathlib import Path
from typing import Optional


class Database:
    """SQLite database connection manager."""

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory DB.
        """
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self) -> None:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = sqlite3.connect(self.db_path)
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA foreign_keys = ON")

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the database connection."""
        if self._connection is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._connection

    def initialize(self) -> None:
        """Create database schema if it doesn't exist."""
        cursor = self.connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS watchlist (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                market TEXT NOT NULL,
                type TEXT NOT NULL,
                exchange TEXT NOT NULL,
                name TEXT,
                active INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (symbol, market)
            )
        """)

        # Append-only observation log
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS price_points (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                market TEXT NOT NULL,
                price REAL NOT NULL,
                timestamp TIMESTAMP NOT NULL,
                source TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS daily_snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                market TEXT NOT NULL,
                date TEXT NOT NULL,
                close_price REAL NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (symbol, market, date)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                market TEXT NOT NULL,
                threshold INTEGER NOT NULL,
                timeframe TEXT NOT NULL,
                drop_percentage REAL NOT NULL,
                price REAL NOT NULL,
                historical_price REAL NOT NULL,
                timestamp TIMESTAMP NOT NULL,
                critical INTEGER NOT NULL DEFAULT 0,
                notified INTEGER NOT NULL DEFAULT 0,
                notified_at TIMESTAMP,
                delivery_attempts INTEGER NOT NULL DEFAULT 0,
                unrouted INTEGER NOT NULL DEFAULT 0
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS cooldowns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                market TEXT NOT NULL,
                threshold INTEGER NOT NULL,
                timeframe TEXT NOT NULL,
                last_alert_timestamp TIMESTAMP NOT NULL,
                reference_price REAL NOT NULL,
                state TEXT NOT NULL DEFAULT 'active',
                UNIQUE (symbol, market, threshold, timeframe)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS recovery_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                alert_id INTEGER NOT NULL UNIQUE,
                symbol TEXT NOT NULL,
                market TEXT NOT NULL,
                reference_price REAL NOT NULL,
                trough_price REAL NOT NULL,
                opened_at TIMESTAMP NOT NULL,
                state TEXT NOT NULL DEFAULT 'pending',
                recovery_price REAL,
                recovered_at TIMESTAMP,
                recovery_percent REAL,
                duration_seconds INTEGER,
                notified INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY (alert_id) REFERENCES alerts(id) ON DELETE CASCADE
            )
        """)

        # Last known pipeline health per market, readable from the CLI
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS market_status (
                market TEXT PRIMARY KEY,
                degraded_after INTEGER NOT NULL,
                is_updating INTEGER NOT NULL DEFAULT 0,
                consecutive_failures INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                last_update_start TIMESTAMP,
                last_update_complete TIMESTAMP,
                last_update_duration REAL,
                last_success TIMESTAMP,
                symbol_count INTEGER NOT NULL DEFAULT 0,
                skipped_ticks INTEGER NOT NULL DEFAULT 0
            )
        """)

        # Create indexes for common queries
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_watchlist_market_active
            ON watchlist(market, active)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_price_points_symbol_time
            ON price_points(symbol, market, timestamp)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_snapshots_symbol_date
            ON daily_snapshots(symbol, market, date)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_alerts_market_time
            ON alerts(market, timestamp)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_recovery_symbol_state
            ON recovery_records(symbol, market, state)
        """)

        self.connection.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
