"""
Notification dispatcher: routes alerts to channels at most once.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from crashwatch.database.models import Alert, Market, RecoveryRecord
from crashwatch.database.repository import AlertRepository, RecoveryRepository
from crashwatch.errors import NotificationError
from crashwatch.markets import MarketClock

from .base import NotificationResult, Notifier
from .templates import Message, render_alert, render_recovery

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Outcome of dispatching one alert or recovery."""

    alert_id: Optional[int]
    skipped: bool = False
    dry_run: bool = False
    unrouted: bool = False
    results: list[NotificationResult] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.dry_run or any(r.success for r in self.results)


class NotificationDispatcher:
    """Formats alerts and fans them out to the channels that accept them."""

    def __init__(
        self,
        alerts: AlertRepository,
        notifiers: list[Notifier],
        recoveries: Optional[RecoveryRepository] = None,
        clock: Optional[MarketClock] = None,
        dry_run: bool = False,
        max_attempts: int = 5,
        retry_window: timedelta = timedelta(hours=24),
    ):
        self.alerts = alerts
        self.notifiers = notifiers
        self.recoveries = recoveries
        self.clock = clock or MarketClock()
        self.dry_run = dry_run
        # Retries stop after this many failed deliveries or once the alert is this old
        self.max_attempts = max_attempts
        self.retry_window = retry_window
        self._in_flight: set[int] = set()

    async def _send_all(
        self, targets: list[Notifier], message: Message
    ) -> list[NotificationResult]:
        outcomes = await asyncio.gather(
            *(asyncio.to_thread(notifier.send, message) for notifier in targets),
            return_exceptions=True,
        )
        results = []
        for notifier, outcome in zip(targets, outcomes):
            if isinstance(outcome, NotificationError):
                logger.warning(f"Delivery failed: {outcome}")
                outcome = NotificationResult(
                    success=False, channel=outcome.channel, error=outcome.reason
                )
            elif isinstance(outcome, BaseException):
                logger.error(f"{notifier.channel} notifier raised: {outcome}")
                outcome = NotificationResult(
                    success=False, channel=notifier.channel, error=str(outcome)
                )
            elif not outcome.success:
                logger.warning(f"{outcome.channel} delivery failed: {outcome.error}")
            results.append(outcome)
        return results

    async def notify(
        self, alert: Alert, now: Optional[datetime] = None
    ) -> DispatchResult:
        """
        Deliver an alert to every channel whose minimum threshold it meets.

        The stored ``notified`` flag is authoritative: an alert already
        notified, unrouted, or currently being dispatched, is skipped. The
        alert is marked notified only if at least one channel succeeded;
        otherwise the failed attempt is counted for retry_pending.
        """
        now = now or datetime.now(timezone.utc)

        if alert.id is not None:
            stored = self.alerts.get_by_id(alert.id)
            done = stored is not None and (stored.notified or stored.unrouted)
            if done or alert.id in self._in_flight:
                return DispatchResult(alert_id=alert.id, skipped=True)

        message = render_alert(alert, self.clock)

        if self.dry_run:
            logger.info(f"[dry-run] {message.subject}\n{message.to_text()}")
            self._mark_notified(alert, now)
            return DispatchResult(alert_id=alert.id, dry_run=True)

        targets = [n for n in self.notifiers if n.accepts(alert.threshold)]
        if not targets:
            logger.info(
                f"No channel routes {alert.threshold}% alerts; {alert.symbol} alert not sent"
            )
            if alert.id is not None:
                self.alerts.mark_unrouted(alert.id)
            alert.unrouted = True
            return DispatchResult(alert_id=alert.id, unrouted=True)

        if alert.id is not None:
            self._in_flight.add(alert.id)
        try:
            results = await self._send_all(targets, message)
        finally:
            self._in_flight.discard(alert.id)

        result = DispatchResult(alert_id=alert.id, results=results)
        if result.delivered:
            self._mark_notified(alert, now)
            logger.info(
                f"Notified {alert.symbol} {alert.threshold}% {alert.timeframe.value} via "
                f"{', '.join(r.channel for r in results if r.success)}"
            )
        elif alert.id is not None:
            alert.delivery_attempts = self.alerts.record_attempt(alert.id)
            if alert.delivery_attempts >= self.max_attempts:
                logger.error(
                    f"Giving up on alert {alert.id} ({alert.symbol}) after "
                    f"{alert.delivery_attempts} failed deliveries"
                )
        return result

    def _mark_notified(self, alert: Alert, now: datetime) -> None:
        if alert.id is not None:
            self.alerts.mark_notified(alert.id, now)
        alert.notified = True
        alert.notified_at = now

    async def retry_pending(
        self, market: Optional[Market] = None, now: Optional[datetime] = None
    ) -> list[DispatchResult]:
        """
        Re-dispatch alerts whose earlier delivery failed on every channel.

        Only alerts younger than ``retry_window`` with fewer than
        ``max_attempts`` failed deliveries are retried.
        """
        now = now or datetime.now(timezone.utc)
        results = []
        if not self.notifiers and not self.dry_run:
            return results
        pending = self.alerts.list_unnotified(
            market, since=now - self.retry_window, max_attempts=self.max_attempts
        )
        for alert in pending:
            results.append(await self.notify(alert, now))
        return results

    async def notify_recovery(self, record: RecoveryRecord) -> DispatchResult:
        """Announce a recovered symbol on every channel."""
        if record.notified:
            return DispatchResult(alert_id=record.alert_id, skipped=True)

        message = render_recovery(record, self.clock)
        if self.dry_run:
            logger.info(f"[dry-run] {message.subject}\n{message.to_text()}")
            result = DispatchResult(alert_id=record.alert_id, dry_run=True)
        else:
            results = await self._send_all(list(self.notifiers), message)
            result = DispatchResult(alert_id=record.alert_id, results=results)

        if result.delivered:
            record.notified = True
            if self.recoveries is not None and record.id is not None:
                self.recoveries.update(record)
        return result
