"""
Message templates shared by every notification channel.
"""

from dataclasses import dataclass, field
from datetime import datetime
from html import escape
from typing import Optional

from crashwatch.database.models import Alert, Market, RecoveryRecord, Timeframe
from crashwatch.markets import CURRENCY_SYMBOLS, MARKET_LABELS, MarketClock

TIMEFRAME_LABELS = {
    Timeframe.DAY: "Previous Day",
    Timeframe.WEEK: "1 Week Ago",
    Timeframe.MONTH: "1 Month Ago",
    Timeframe.YEAR: "1 Year Ago",
}

SEVERITY_CRITICAL = "CRITICAL"
SEVERITY_HIGH = "HIGH"
SEVERITY_MEDIUM = "MEDIUM"
SEVERITY_RECOVERY = "RECOVERY"

# Non-critical alerts at or above this threshold render as HIGH
HIGH_THRESHOLD = 15


def severity_for(alert: Alert) -> str:
    """Critical comes from the detector's ladder, not from the threshold."""
    if alert.critical:
        return SEVERITY_CRITICAL
    if alert.threshold >= HIGH_THRESHOLD:
        return SEVERITY_HIGH
    return SEVERITY_MEDIUM


EMOJI = {SEVERITY_CRITICAL: "🚨", SEVERITY_HIGH: "⚠️", SEVERITY_MEDIUM: "📉"}


def format_price(market: Market, price: float) -> str:
    return f"{CURRENCY_SYMBOLS[market]}{price:,.2f}"


@dataclass
class Message:
    """A rendered notification, independent of the channel it goes out on."""

    kind: str  # "alert" or "recovery"
    symbol: str
    market: Market
    title: str
    subject: str
    severity: str
    critical: bool
    timestamp: datetime  # in the market's timezone
    fields: list[tuple[str, str]] = field(default_factory=list)
    footer: Optional[str] = None

    @property
    def time_label(self) -> str:
        return self.timestamp.strftime("%Y-%m-%d %H:%M:%S %Z")

    def to_text(self) -> str:
        """Plain-text body."""
        lines = [self.title, ""]
        lines.extend(f"{name}: {value}" for name, value in self.fields)
        if self.footer:
            lines.extend(["", self.footer])
        lines.extend(["", f"Time: {self.time_label}"])
        return "\n".join(lines)

    def to_html(self) -> str:
        """Body using the small HTML subset Telegram accepts."""
        lines = [f"<b>{escape(self.title)}</b>", ""]
        lines.extend(
            f"{escape(name)}: <b>{escape(value)}</b>" for name, value in self.fields
        )
        if self.footer:
            lines.extend(["", escape(self.footer)])
        lines.extend(["", f"Time: {escape(self.time_label)}"])
        return "\n".join(lines)


def render_alert(alert: Alert, clock: Optional[MarketClock] = None) -> Message:
    clock = clock or MarketClock()
    market = alert.market
    severity = severity_for(alert)
    short_market = "USA" if market == Market.USA else "India"

    fields = [
        ("Market", MARKET_LABELS[market]),
        ("Symbol", alert.symbol),
        ("Drop", f"{alert.drop_percentage:.2f}% (Threshold: {alert.threshold}%)"),
        ("Timeframe", TIMEFRAME_LABELS[alert.timeframe]),
        ("Current Price", format_price(market, alert.price)),
        ("Historical Price", format_price(market, alert.historical_price)),
    ]

    return Message(
        kind="alert",
        symbol=alert.symbol,
        market=market,
        title=f"{EMOJI[severity]} Market Crash Alert",
        subject=(
            f"[{severity}] {short_market} Market Crash Alert: "
            f"{alert.symbol} down {alert.drop_percentage:.2f}%"
        ),
        severity=severity,
        critical=alert.critical,
        timestamp=alert.timestamp.astimezone(clock.timezone(market)),
        fields=fields,
    )


def render_recovery(
    record: RecoveryRecord, clock: Optional[MarketClock] = None
) -> Message:
    clock = clock or MarketClock()
    market = record.market
    when = record.recovered_at or record.opened_at
    short_market = "USA" if market == Market.USA else "India"

    fields = [
        ("Market", MARKET_LABELS[market]),
        ("Symbol", record.symbol),
        ("Recovery", f"+{record.recovery_percent or 0:.2f}% from bottom"),
        ("Bottom Price", format_price(market, record.trough_price)),
        ("Current Price", format_price(market, record.recovery_price or 0)),
    ]
    if record.duration_seconds is not None:
        fields.append(("Time To Recover", format_duration(record.duration_seconds)))

    return Message(
        kind="recovery",
        symbol=record.symbol,
        market=market,
        title="📈 Recovery Alert",
        subject=f"[RECOVERY] {short_market} Market Recovery: {record.symbol}",
        severity=SEVERITY_RECOVERY,
        critical=False,
        timestamp=when.astimezone(clock.timezone(market)),
        fields=fields,
        footer="Price is back at its pre-alert reference level.",
    )


def format_duration(seconds: int) -> str:
    days, rem = divmod(int(seconds), 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
