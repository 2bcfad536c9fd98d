"""Notification dispatch for newly accepted alerts.

The dispatcher resolves recipients, picks channels by severity (or the
recipient's own preferences), sends through the channel senders and
records every attempt as a ``notify`` history entry. It runs after the
ingestion transaction has committed, on worker tasks fed by
``NotificationQueue``; its failures never reach the ingesting caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carealert.alerting.channels import ChannelSender, DeliveryResult
from carealert.alerting.history import HistoryLedger
from carealert.alerting.recipients import Recipient, RecipientResolver
from carealert.core.models import Alert, AlertSeverity, HistoryAction

logger = logging.getLogger(__name__)

SEVERITY_CHANNELS: dict[AlertSeverity, tuple[str, ...]] = {
    AlertSeverity.CRITICAL: ("email", "sms", "push"),
    AlertSeverity.HIGH: ("email", "push"),
    AlertSeverity.MEDIUM: ("email",),
    AlertSeverity.LOW: ("email",),
}


def channels_for(severity: AlertSeverity | str, recipient: Recipient) -> tuple[str, ...]:
    """Channels to use for a recipient; explicit preferences win over severity."""
    if recipient.notification_preferences is not None:
        return recipient.notification_preferences
    return SEVERITY_CHANNELS[AlertSeverity(severity)]


class NotificationDispatcher:
    """Sends notifications for one alert and logs each attempt.

    Args:
        session_factory: Factory for the sessions notify entries are written in.
        resolver: Recipient lookup.
        senders: Channel name to sender.
        send_timeout: Seconds allowed for a single send.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        resolver: RecipientResolver,
        senders: Mapping[str, ChannelSender],
        send_timeout: float = 10.0,
    ) -> None:
        self._session_factory = session_factory
        self._resolver = resolver
        self._senders = dict(senders)
        self._send_timeout = send_timeout

    async def dispatch(self, alert: Alert) -> list[DeliveryResult]:
        """Notify every resolved recipient about ``alert``.

        Pairs whose contact field is missing are skipped silently and
        produce no history entry.

        Returns:
            One result per attempted send.
        """
        try:
            recipients = await self._resolver.resolve(alert)
        except Exception:
            logger.exception("Recipient resolution failed for alert %s", alert.id)
            return []

        results: list[DeliveryResult] = []
        for recipient in recipients:
            for channel in channels_for(alert.severity, recipient):
                sender = self._senders.get(channel)
                if sender is None:
                    logger.warning("Unknown notification channel %s for recipient %s", channel, recipient.user_id)
                    continue
                if not recipient.contact_for(channel):
                    logger.debug("Recipient %s has no %s contact, skipping", recipient.user_id, channel)
                    continue

                result = await self._attempt(sender, recipient, alert)
                results.append(result)
                await self._record(alert, recipient, result)

        logger.info(
            "Dispatched alert %s: %d attempt(s), %d failed",
            alert.id,
            len(results),
            sum(1 for r in results if not r.success),
        )
        return results

    async def _attempt(self, sender: ChannelSender, recipient: Recipient, alert: Alert) -> DeliveryResult:
        try:
            return await asyncio.wait_for(sender.send(recipient, alert), timeout=self._send_timeout)
        except TimeoutError:
            reason = f"timed out after {self._send_timeout}s"
        except Exception as e:  # noqa: BLE001
            reason = str(e) or type(e).__name__
        logger.warning("%s notification for alert %s to %s failed: %s", sender.channel, alert.id, recipient.user_id, reason)
        return DeliveryResult(sender.channel, recipient.user_id, success=False, error=reason)

    async def _record(self, alert: Alert, recipient: Recipient, result: DeliveryResult) -> None:
        ts = max(datetime.now(UTC), alert.created_at)
        try:
            async with self._session_factory() as session:
                await HistoryLedger(session).record(
                    alert.id,
                    HistoryAction.NOTIFY,
                    actor=None,
                    note=f"{result.channel} notification sent to {recipient.display_name}",
                    meta=result.to_meta(),
                    ts=ts,
                )
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to record notify history for alert %s", alert.id)


class NotificationQueue:
    """Bounded queue of alerts awaiting dispatch, drained by worker tasks."""

    def __init__(self, dispatcher: NotificationDispatcher, maxsize: int = 1000, worker_count: int = 1) -> None:
        self._dispatcher = dispatcher
        self._queue: asyncio.Queue[Alert] = asyncio.Queue(maxsize=maxsize)
        self._worker_count = max(1, worker_count)
        self._workers: list[asyncio.Task[None]] = []

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(self, alert: Alert) -> bool:
        """Queue an alert for dispatch; drops it with a warning when full."""
        try:
            self._queue.put_nowait(alert)
        except asyncio.QueueFull:
            logger.warning("Notification queue full, dropping dispatch for alert %s", alert.id)
            return False
        return True

    def start(self) -> None:
        for n in range(self._worker_count):
            self._workers.append(asyncio.create_task(self.run_worker(f"notifier-{n + 1}")))

    async def join(self) -> None:
        """Wait until every queued alert has been dispatched."""
        await self._queue.join()

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Give in-flight jobs a chance to finish, then cancel the workers."""
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except TimeoutError:
            logger.warning("Notification queue not drained on shutdown (%d pending)", self.pending)
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

    async def run_worker(self, worker_id: str = "notifier-1") -> None:
        """Dispatch queued alerts until cancelled."""
        logger.info("Notification worker %s started", worker_id)
        while True:
            try:
                alert = await self._queue.get()
            except asyncio.CancelledError:
                break
            try:
                await self._dispatcher.dispatch(alert)
            except asyncio.CancelledError:
                self._queue.task_done()
                break
            except Exception:
                logger.exception("Notification worker %s failed on alert %s", worker_id, alert.id)
            self._queue.task_done()
        logger.info("Notification worker %s stopped", worker_id)
