"""Tests for notification dispatch and the dispatch queue."""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carealert.alerting.channels import ChannelSender, DeliveryError, DeliveryResult
from carealert.alerting.dispatcher import NotificationDispatcher, NotificationQueue, channels_for
from carealert.alerting.history import HistoryLedger
from carealert.alerting.recipients import Recipient, SettingsRecipientResolver
from carealert.alerting.service import AlertService
from carealert.core.config import RecipientConfig
from carealert.core.models import Alert, AlertSeverity, HistoryAction

DAYTIME = datetime(2026, 3, 10, 10, 0, tzinfo=UTC)

OWNER = Recipient(
    user_id="owner-1",
    name="Dana",
    email="dana@example.com",
    phone="+15550100",
    device_token="tok-1",
    house_ids=("h1",),
)


class FakeSender(ChannelSender):
    """Records deliveries; optionally fails or hangs."""

    def __init__(self, channel: str, error: Exception | None = None, delay: float = 0.0) -> None:
        super().__init__(simulate=False)
        self.channel = channel
        self.error = error
        self.delay = delay
        self.sent: list[tuple[str, uuid.UUID]] = []

    async def send(self, recipient: Recipient, alert: Alert) -> DeliveryResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.sent.append((recipient.user_id, alert.id))
        return DeliveryResult(self.channel, recipient.user_id, success=True)


def _senders(**overrides: FakeSender) -> dict[str, FakeSender]:
    senders = {name: FakeSender(name) for name in ("email", "sms", "push", "webhook")}
    senders.update(overrides)
    return senders


async def _create_alert(session: AsyncSession, test_settings, alert_type: str, **kwargs) -> Alert:
    service = AlertService(session, settings=test_settings)
    result = await service.ingest(house_id="h1", device_id="d1", type=alert_type, ts=DAYTIME, **kwargs)
    alert = await session.get(Alert, uuid.UUID(result["alert_id"]))
    assert alert is not None
    return alert


class TestChannelSelection:
    @pytest.mark.parametrize(
        ("severity", "expected"),
        [
            (AlertSeverity.CRITICAL, ("email", "sms", "push")),
            (AlertSeverity.HIGH, ("email", "push")),
            (AlertSeverity.MEDIUM, ("email",)),
            (AlertSeverity.LOW, ("email",)),
        ],
    )
    def test_channels_by_severity(self, severity: AlertSeverity, expected: tuple[str, ...]) -> None:
        assert channels_for(severity, OWNER) == expected

    def test_recipient_preferences_override_severity(self) -> None:
        recipient = Recipient(user_id="u2", email="a@b.c", notification_preferences=("sms",))
        assert channels_for(AlertSeverity.LOW, recipient) == ("sms",)


class TestNotificationDispatcher:
    """Given a newly accepted alert, the dispatcher notifies each
    recipient on each channel and logs every attempt."""

    async def test_critical_alert_uses_all_channels(
        self, db_session: AsyncSession, session_factory: async_sessionmaker[AsyncSession], test_settings
    ) -> None:
        alert = await _create_alert(db_session, test_settings, "smoke_alarm")
        senders = _senders()
        dispatcher = NotificationDispatcher(session_factory, SettingsRecipientResolver([OWNER]), senders)

        results = await dispatcher.dispatch(alert)

        assert [r.channel for r in results] == ["email", "sms", "push"]
        assert all(r.success for r in results)
        assert senders["sms"].sent == [("owner-1", alert.id)]

        async with session_factory() as session:
            entries = await HistoryLedger(session).history_for(alert.id)
        notify = [e for e in entries if e.action == HistoryAction.NOTIFY]
        assert len(notify) == 3
        assert notify[0].actor is None
        assert notify[0].note == "email notification sent to Dana"
        assert notify[0].meta["recipient_id"] == "owner-1"
        assert notify[0].meta["success"] is True

    async def test_missing_contact_is_skipped_silently(
        self, db_session: AsyncSession, session_factory, test_settings
    ) -> None:
        alert = await _create_alert(db_session, test_settings, "smoke_alarm")
        email_only = Recipient(user_id="cg-1", email="cg@example.com")
        senders = _senders()
        dispatcher = NotificationDispatcher(session_factory, SettingsRecipientResolver([email_only]), senders)

        results = await dispatcher.dispatch(alert)

        assert [r.channel for r in results] == ["email"]
        assert senders["sms"].sent == []

    async def test_failed_send_is_logged_and_others_continue(
        self, db_session: AsyncSession, session_factory, test_settings
    ) -> None:
        alert = await _create_alert(db_session, test_settings, "smoke_alarm")
        senders = _senders(sms=FakeSender("sms", error=DeliveryError("gateway returned 503")))
        dispatcher = NotificationDispatcher(session_factory, SettingsRecipientResolver([OWNER]), senders)

        results = await dispatcher.dispatch(alert)

        by_channel = {r.channel: r for r in results}
        assert by_channel["sms"].success is False
        assert by_channel["sms"].error == "gateway returned 503"
        assert by_channel["push"].success is True

        async with session_factory() as session:
            entries = await HistoryLedger(session).history_for(alert.id)
        failed = [e for e in entries if e.action == HistoryAction.NOTIFY and not e.meta["success"]]
        assert len(failed) == 1
        assert failed[0].meta["channel"] == "sms"

    async def test_slow_send_times_out(self, db_session: AsyncSession, session_factory, test_settings) -> None:
        alert = await _create_alert(db_session, test_settings, "dog_bark")
        senders = _senders(email=FakeSender("email", delay=5.0))
        dispatcher = NotificationDispatcher(
            session_factory, SettingsRecipientResolver([OWNER]), senders, send_timeout=0.05
        )

        results = await dispatcher.dispatch(alert)

        assert len(results) == 1
        assert results[0].success is False
        assert "timed out" in results[0].error

    async def test_unknown_preferred_channel_is_skipped(
        self, db_session: AsyncSession, session_factory, test_settings
    ) -> None:
        alert = await _create_alert(db_session, test_settings, "fall")
        recipient = Recipient(user_id="u1", email="u1@example.com", notification_preferences=("pager", "email"))
        dispatcher = NotificationDispatcher(session_factory, SettingsRecipientResolver([recipient]), _senders())

        results = await dispatcher.dispatch(alert)
        assert [r.channel for r in results] == ["email"]

    async def test_resolver_failure_yields_no_attempts(
        self, db_session: AsyncSession, session_factory, test_settings
    ) -> None:
        class BrokenResolver:
            async def resolve(self, alert):
                raise ConnectionError("directory offline")

        alert = await _create_alert(db_session, test_settings, "fall")
        dispatcher = NotificationDispatcher(session_factory, BrokenResolver(), _senders())
        assert await dispatcher.dispatch(alert) == []


class TestRecipientResolver:
    async def test_owners_are_bound_to_houses_and_caregivers_see_all(
        self, db_session: AsyncSession, test_settings
    ) -> None:
        alert = await _create_alert(db_session, test_settings, "fall")
        resolver = SettingsRecipientResolver(
            [
                RecipientConfig(user_id="owner-h1", email="o1@example.com", house_ids=["h1"]),
                RecipientConfig(user_id="owner-h2", email="o2@example.com", house_ids=["h2"]),
                RecipientConfig(user_id="caregiver", email="cg@example.com"),
            ]
        )
        recipients = await resolver.resolve(alert)
        assert [r.user_id for r in recipients] == ["owner-h1", "caregiver"]


class TestNotificationQueue:
    async def test_worker_dispatches_queued_alerts(
        self, db_session: AsyncSession, session_factory, test_settings
    ) -> None:
        alert = await _create_alert(db_session, test_settings, "dog_bark")
        senders = _senders()
        queue = NotificationQueue(
            NotificationDispatcher(session_factory, SettingsRecipientResolver([OWNER]), senders),
            maxsize=10,
        )
        queue.start()
        try:
            assert queue.enqueue(alert) is True
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert senders["email"].sent == [("owner-1", alert.id)]

    async def test_full_queue_drops_job(self, db_session: AsyncSession, session_factory, test_settings) -> None:
        alert = await _create_alert(db_session, test_settings, "dog_bark")
        queue = NotificationQueue(
            NotificationDispatcher(session_factory, SettingsRecipientResolver([]), _senders()),
            maxsize=1,
        )
        assert queue.enqueue(alert) is True
        assert queue.enqueue(alert) is False
        assert queue.pending == 1
