"""
Daily health check - sends a status message to Discord.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional

from crashwatch.database.connection import Database
from crashwatch.database.models import Market
from crashwatch.markets import MARKET_LABELS, MarketClock
from crashwatch.notifiers.discord import post_webhook
from crashwatch.reports import system_status

logger = logging.getLogger(__name__)

COLOR_OK = 0x2ECC71
COLOR_DEGRADED = 0xFFA500


def build_payload(
    db: Database,
    now: datetime,
    clock: Optional[MarketClock] = None,
    statuses: Optional[dict] = None,
) -> dict[str, Any]:
    """Build the Discord embed summarising every market."""
    statuses = statuses or {}
    fields = []
    degraded = []

    for market in Market:
        status = system_status(db, market, now, clock, statuses.get(market))
        pipeline = status["pipeline"]
        if pipeline["degraded"]:
            degraded.append(market.value)

        lines = [
            f"Session: {'open' if status['is_open'] else 'closed'}",
            f"Symbols: {status['watchlist']['active']}/{status['watchlist']['total']} active",
            f"Alerts today: {status['alerts']['today']} "
            f"({status['alerts']['critical']} critical all-time)",
        ]
        if pipeline["last_update"]:
            lines.append(f"Last update: {pipeline['last_update']}")
        if pipeline["consecutive_failures"]:
            lines.append(f"Failures: {pipeline['consecutive_failures']}")
        fields.append(
            {"name": MARKET_LABELS[market], "value": "\n".join(lines), "inline": True}
        )

    if degraded:
        description = f"Degraded pipelines: {', '.join(degraded)}"
    else:
        description = "System is running normally."

    return {
        "embeds": [{
            "title": "Crashwatch Daily Health Check",
            "description": description,
            "color": COLOR_DEGRADED if degraded else COLOR_OK,
            "fields": fields,
            "timestamp": now.isoformat(),
        }]
    }


def run_healthcheck(
    db: Database,
    webhook_url: Optional[str] = None,
    clock: Optional[MarketClock] = None,
    statuses: Optional[dict] = None,
) -> bool:
    """Run health check and send status to Discord.

    Args:
        db: Database instance (already initialized)
        webhook_url: Discord webhook, defaults to $DISCORD_WEBHOOK_URL
        clock: Market clock
        statuses: Scheduler MarketStatus per market, when running in-process

    Returns:
        True if Discord accepted the message
    """
    webhook_url = webhook_url or os.getenv("DISCORD_WEBHOOK_URL")
    if not webhook_url:
        logger.warning("DISCORD_WEBHOOK_URL not set, skipping health check")
        return False

    now = datetime.now(timezone.utc)
    payload = build_payload(db, now, clock, statuses)

    response = post_webhook(webhook_url, payload)
    logger.info(f"Health check sent (status: {response.status_code})")
    return response.ok
