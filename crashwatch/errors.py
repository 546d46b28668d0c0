"""
Exception taxonomy for the monitoring core.
"""

from typing import Optional


class CrashwatchError(Exception):
    """Base class for all monitoring errors."""

    pass


class ValidationError(CrashwatchError):
    """Raised when an unknown market, symbol type or timeframe is passed in."""

    pass


class FetchError(CrashwatchError):
    """Raised when no configured source could produce a price."""

    def __init__(self, symbol: str, source: Optional[str] = None, reason: str = ""):
        self.symbol = symbol
        self.source = source
        self.reason = reason
        where = f" from {source}" if source else ""
        super().__init__(f"Failed to fetch {symbol}{where}: {reason}")


class MissingHistoricalReference(CrashwatchError):
    """No daily snapshot within tolerance for a symbol/timeframe."""

    def __init__(self, symbol: str, market: str, timeframe: str):
        self.symbol = symbol
        self.market = market
        self.timeframe = timeframe
        super().__init__(
            f"No historical reference for {symbol} ({market}) on {timeframe} timeframe"
        )


class NotificationError(CrashwatchError):
    """Raised by a channel when a message could not be delivered."""

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"{channel}: {reason}")
