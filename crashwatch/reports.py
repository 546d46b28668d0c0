"""
Read-only views over the monitoring state.
"""

import statistics
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from crashwatch.data.history import HistoricalPriceResolver
from crashwatch.database.connection import Database
from crashwatch.database.models import Alert, Market, MarketStatus, Timeframe
from crashwatch.database.repository import (
    AlertRepository,
    MarketStatusRepository,
    PriceRepository,
    RecoveryRepository,
    SnapshotRepository,
    WatchlistRepository,
)
from crashwatch.markets import MarketClock
from crashwatch.rules.recovery import summarize_recoveries

APPROACHING_THRESHOLD = 8.0
VOLATILITY_THRESHOLD = 5.0
SIGNIFICANT_MOVE = 3.0

SEVERITY_ORDER = {"high": 0, "medium": 1, "low": 2}


@dataclass
class AttentionItem:
    """A symbol flagged for a closer look."""

    symbol: str
    name: Optional[str]
    type: str
    current_price: float
    change_percent: float
    reason: str
    details: str
    severity: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def list_alerts(
    db: Database,
    market: Optional[Market] = None,
    since: Optional[datetime] = None,
    limit: int = 50,
) -> list[Alert]:
    """Alert records, newest first."""
    return AlertRepository(db).list_recent(market=market, since=since, limit=limit)


def _start_of_local_day(clock: MarketClock, market: Market, now: datetime) -> datetime:
    local = now.astimezone(clock.timezone(market))
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def system_status(
    db: Database,
    market: Market,
    now: datetime,
    clock: Optional[MarketClock] = None,
    status: Optional[MarketStatus] = None,
) -> dict[str, Any]:
    """
    Snapshot of one market's state.

    Args:
        db: Database instance
        market: Market to report on
        now: Current time (timezone-aware)
        clock: Market clock, defaults to the built-in hours
        status: The scheduler's MarketStatus for this market, if running
            in-process; otherwise the last status the service stored
    """
    clock = clock or MarketClock()
    alerts = AlertRepository(db)
    total, active = WatchlistRepository(db).counts(market)
    if status is None:
        status = MarketStatusRepository(db).get(market)

    pipeline: dict[str, Any] = {
        "is_updating": False,
        "last_update": None,
        "last_update_duration": None,
        "consecutive_failures": 0,
        "degraded": False,
        "last_error": None,
    }
    if status is not None:
        pipeline = {
            "is_updating": status.is_updating,
            "last_update": (
                status.last_update_complete.isoformat()
                if status.last_update_complete
                else None
            ),
            "last_update_duration": status.last_update_duration,
            "consecutive_failures": status.consecutive_failures,
            "degraded": status.degraded,
            "last_error": status.last_error,
        }

    return {
        "market": market.value,
        "is_open": clock.is_open(market, now),
        "next_transition": clock.next_transition(market, now).isoformat(),
        "watchlist": {"total": total, "active": active},
        "alerts": {
            "total": alerts.count(market),
            "critical": alerts.count(market, critical_only=True),
            "today": alerts.count(
                market, since=_start_of_local_day(clock, market, now)
            ),
        },
        "pipeline": pipeline,
    }


def _sentiment(total: int, critical: int) -> str:
    if not total:
        return "bullish"
    critical_share = critical / total * 100
    if critical_share > 30:
        return "bearish"
    if critical_share > 10:
        return "neutral"
    return "bullish"


def market_health(
    db: Database, market: Market, now: datetime, window_days: int = 7
) -> dict[str, Any]:
    """Alert frequency, recovery rate, volatility and sentiment over a window."""
    since = now - timedelta(days=window_days)
    alerts = AlertRepository(db).list_recent(market=market, since=since, limit=-1)
    records = RecoveryRepository(db).list_since(market, since)

    total = len(alerts)
    critical = sum(1 for a in alerts if a.critical)
    drops = [a.drop_percentage for a in alerts]
    stats = summarize_recoveries(records)

    return {
        "market": market.value,
        "window_days": window_days,
        "alert_frequency": round(total / window_days, 1) if window_days else 0.0,
        "recovery_rate": round(stats.recovery_rate, 1),
        "volatility": round(statistics.pstdev(drops), 1) if drops else 0.0,
        "sentiment": _sentiment(total, critical),
        "total_alerts": total,
        "critical_alerts": critical,
    }


def symbols_requiring_attention(
    db: Database,
    market: Market,
    now: datetime,
    clock: Optional[MarketClock] = None,
) -> list[AttentionItem]:
    """
    Flag active symbols with a recent alert or a large move versus the
    previous day's close. Each symbol is flagged for its first matching
    reason only.
    """
    clock = clock or MarketClock()
    prices = PriceRepository(db)
    alerts = AlertRepository(db)
    resolver = HistoricalPriceResolver(SnapshotRepository(db), clock)
    day_ago = now - timedelta(hours=24)

    items = []
    for entry in WatchlistRepository(db).list_active(market):
        latest = prices.latest(entry.symbol, market)
        if latest is None:
            continue

        reference = resolver.resolve(entry.symbol, market, Timeframe.DAY, now)
        change = 0.0
        if reference is not None and reference.close_price > 0:
            change = (latest.price - reference.close_price) / reference.close_price * 100

        def flag(reason: str, details: str, severity: str) -> None:
            items.append(
                AttentionItem(
                    symbol=entry.symbol,
                    name=entry.name,
                    type=entry.type.value,
                    current_price=latest.price,
                    change_percent=round(change, 2),
                    reason=reason,
                    details=details,
                    severity=severity,
                )
            )

        recent = alerts.list_for_symbol_since(entry.symbol, market, day_ago)
        if recent:
            alert = recent[0]
            flag(
                "recent_alert",
                f"Crashed {alert.drop_percentage:.2f}% ({alert.timeframe.value})",
                "high" if alert.critical else "medium",
            )
        elif change <= -APPROACHING_THRESHOLD:
            if change <= -15:
                severity = "high"
            elif change <= -10:
                severity = "medium"
            else:
                severity = "low"
            flag("approaching_threshold", f"Down {abs(change):.2f}% today", severity)
        elif abs(change) >= VOLATILITY_THRESHOLD:
            flag(
                "high_volatility",
                f"{'+' if change >= 0 else ''}{change:.2f}% today",
                "high" if abs(change) >= 10 else "medium",
            )
        elif abs(change) >= SIGNIFICANT_MOVE:
            flag(
                "significant_move",
                f"{'+' if change >= 0 else ''}{change:.2f}% today",
                "low",
            )

    items.sort(key=lambda i: (SEVERITY_ORDER[i.severity], -abs(i.change_percent)))
    return items
