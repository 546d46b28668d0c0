"""
CLI commands for Crashwatch.
"""

import argparse
import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from crashwatch.data.history import SnapshotBackfiller
from crashwatch.data.symbols import default_exchange, normalize_symbol
from crashwatch.database.connection import Database
from crashwatch.database.models import Market, SymbolType, WatchlistSymbol
from crashwatch.database.repository import SnapshotRepository, WatchlistRepository
from crashwatch.errors import CrashwatchError, FetchError
from crashwatch.reports import (
    list_alerts,
    market_health,
    symbols_requiring_attention,
    system_status,
)

logger = logging.getLogger(__name__)


def add_to_watchlist(
    db: Database,
    market: Market,
    symbol_type: SymbolType,
    symbols: list[str],
    name: Optional[str] = None,
    exchange: Optional[str] = None,
) -> dict:
    """Add symbols to the watchlist, reactivating any that were disabled."""
    repo = WatchlistRepository(db)
    added = []
    for raw in symbols:
        symbol = normalize_symbol(raw)
        if not symbol:
            continue
        repo.add(
            WatchlistSymbol(
                symbol=symbol,
                market=market,
                type=symbol_type,
                exchange=exchange or default_exchange(market, symbol_type),
                name=name if len(symbols) == 1 else None,
            )
        )
        added.append(symbol)
    return {"added": added}


def set_active(db: Database, market: Market, symbols: list[str], active: bool) -> dict:
    repo = WatchlistRepository(db)
    updated, not_found = [], []
    for raw in symbols:
        symbol = normalize_symbol(raw)
        if repo.set_active(symbol, market, active):
            updated.append(symbol)
        else:
            not_found.append(symbol)
    return {"updated": updated, "not_found": not_found}


async def backfill_snapshots(
    db: Database,
    market: Market,
    symbols: Optional[list[str]] = None,
    days: int = 400,
) -> dict:
    """Seed daily snapshots from Yahoo Finance history."""
    repo = WatchlistRepository(db)
    entries = repo.list_active(market)
    if symbols:
        wanted = {normalize_symbol(s) for s in symbols}
        entries = [e for e in entries if e.symbol in wanted]

    backfiller = SnapshotBackfiller(SnapshotRepository(db))
    written, failed = {}, {}
    for entry in entries:
        try:
            written[entry.symbol] = await backfiller.backfill(
                entry.symbol, entry.market, entry.type, days
            )
        except (FetchError, asyncio.TimeoutError) as e:
            failed[entry.symbol] = str(e)
            logger.warning(f"Backfill failed for {entry.symbol}: {e}")
    return {"written": written, "failed": failed}


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Crashwatch CLI")
    parser.add_argument("--db", default=None, help="Database path")
    parser.add_argument("--config", default=None, help="Path to config file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # Watchlist commands
    watchlist_parser = subparsers.add_parser("watchlist", help="Watchlist management")
    watchlist_subparsers = watchlist_parser.add_subparsers(dest="action")

    add_parser = watchlist_subparsers.add_parser("add", help="Add symbols")
    add_parser.add_argument("--market", required=True, help="INDIA or USA")
    add_parser.add_argument(
        "--type", default="STOCK", help="INDEX, STOCK or MUTUAL_FUND"
    )
    add_parser.add_argument("--name", help="Display name (single symbol only)")
    add_parser.add_argument("--exchange", help="Exchange label")
    add_parser.add_argument("symbols", nargs="+", help="Symbols to add")

    for action, help_text in (("enable", "Enable symbols"), ("disable", "Disable symbols")):
        toggle_parser = watchlist_subparsers.add_parser(action, help=help_text)
        toggle_parser.add_argument("--market", required=True)
        toggle_parser.add_argument("symbols", nargs="+")

    show_parser = watchlist_subparsers.add_parser("show", help="Show watchlist")
    show_parser.add_argument("--market", help="Filter by market")

    # Snapshot commands
    backfill_parser = subparsers.add_parser("backfill", help="Backfill daily snapshots")
    backfill_parser.add_argument("--market", required=True)
    backfill_parser.add_argument("--days", type=int, default=400)
    backfill_parser.add_argument("symbols", nargs="*", help="Defaults to all active")

    # Reporting commands
    alerts_parser = subparsers.add_parser("alerts", help="List alerts")
    alerts_parser.add_argument("--market")
    alerts_parser.add_argument("--hours", type=float, help="Only the last N hours")
    alerts_parser.add_argument("--limit", type=int, default=50)

    status_parser = subparsers.add_parser("status", help="Market status")
    status_parser.add_argument("--market")

    health_parser = subparsers.add_parser("health", help="Market health aggregates")
    health_parser.add_argument("--market")
    health_parser.add_argument("--days", type=int, default=7)

    attention_parser = subparsers.add_parser(
        "attention", help="Symbols requiring attention"
    )
    attention_parser.add_argument("--market", required=True)

    # Operations
    tick_parser = subparsers.add_parser("tick", help="Run a single monitoring tick")
    tick_parser.add_argument("--force", action="store_true", help="Ignore market hours")
    tick_parser.add_argument("--dry-run", action="store_true")

    subparsers.add_parser("healthcheck", help="Post a health check to Discord")

    db_parser = subparsers.add_parser("db", help="Database management")
    db_subparsers = db_parser.add_subparsers(dest="action")
    db_subparsers.add_parser("init", help="Create schema")
    prune_parser = db_subparsers.add_parser("prune", help="Delete old snapshots")
    prune_parser.add_argument("--days", type=int, default=400)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = None
    if args.config:
        from crashwatch.config import load_config

        config = load_config(args.config)
    db_path = args.db or (config.database.path if config else "data/crashwatch.db")

    # Initialize database
    db = Database(db_path)
    db.initialize()

    now = datetime.now(timezone.utc)
    markets = list(Market)
    if getattr(args, "market", None):
        try:
            markets = [Market.parse(args.market)]
        except CrashwatchError as e:
            parser.error(str(e))

    try:
        if args.command == "watchlist":
            if args.action == "add":
                result = add_to_watchlist(
                    db,
                    markets[0],
                    SymbolType.parse(args.type),
                    args.symbols,
                    name=args.name,
                    exchange=args.exchange,
                )
                print(f"Added: {result['added']}")
            elif args.action in ("enable", "disable"):
                result = set_active(db, markets[0], args.symbols, args.action == "enable")
                print(f"Updated: {result['updated']}")
                if result["not_found"]:
                    print(f"Not found: {result['not_found']}")
            elif args.action == "show":
                repo = WatchlistRepository(db)
                for market in markets:
                    for s in repo.list_all(market):
                        state = "active" if s.active else "disabled"
                        print(f"{s.market.value} {s.symbol}: {s.name or '-'} ({s.type.value}, {state})")

        elif args.command == "backfill":
            result = asyncio.run(
                backfill_snapshots(db, markets[0], args.symbols, args.days)
            )
            for symbol, count in result["written"].items():
                print(f"{symbol}: {count} snapshots")
            for symbol, error in result["failed"].items():
                print(f"{symbol}: FAILED ({error})")

        elif args.command == "alerts":
            since = now - timedelta(hours=args.hours) if args.hours else None
            market = markets[0] if args.market else None
            for alert in list_alerts(db, market, since, args.limit):
                flag = " CRITICAL" if alert.critical else ""
                print(
                    f"{alert.timestamp.isoformat()} {alert.market.value} {alert.symbol} "
                    f"-{alert.drop_percentage:.2f}% vs {alert.timeframe.value} "
                    f"[{alert.threshold}%{flag}] notified={alert.notified}"
                )

        elif args.command == "status":
            _print_json([system_status(db, m, now) for m in markets])

        elif args.command == "health":
            _print_json([market_health(db, m, now, args.days) for m in markets])

        elif args.command == "attention":
            _print_json(
                [i.to_dict() for i in symbols_requiring_attention(db, markets[0], now)]
            )

        elif args.command == "tick":
            from crashwatch.main import CrashwatchApp

            app = CrashwatchApp(db=db, config=config, dry_run=args.dry_run)
            reports = asyncio.run(app.run_once(force=args.force))
            for market, report in reports.items():
                if report is None:
                    print(f"{market.value}: skipped")
                else:
                    print(
                        f"{market.value}: {report.fetched}/{report.symbols} prices, "
                        f"{len(report.alerts)} alerts, {len(report.recoveries)} recoveries"
                    )

        elif args.command == "healthcheck":
            from crashwatch.healthcheck import run_healthcheck

            webhook = config.notifications.discord.webhook_url if config else None
            sent = run_healthcheck(db, webhook_url=webhook or None)
            print("Health check sent" if sent else "Health check not sent")

        elif args.command == "db":
            if args.action == "init":
                print("Database initialized")
            elif args.action == "prune":
                backfiller = SnapshotBackfiller(SnapshotRepository(db))
                deleted = backfiller.prune(now.date(), args.days)
                print(f"Deleted {deleted} snapshots")

        else:
            parser.print_help()
    finally:
        db.close()


if __name__ == "__main__":
    main()
