"""Tests for the history ledger and lifecycle replay."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from carealert.alerting.history import HistoryLedger, replay
from carealert.core.models import Alert, AlertHistory, AlertSeverity, AlertState, HistoryAction

T0 = datetime(2026, 3, 10, 10, 0, tzinfo=UTC)


def _entry(action: HistoryAction, minutes: int, actor: str | None = None) -> AlertHistory:
    return AlertHistory(alert_id=uuid.uuid4(), action=action, actor=actor, ts=T0 + timedelta(minutes=minutes))


async def _persist_alert(session: AsyncSession) -> Alert:
    alert = Alert(
        tenant_id="t1",
        house_id="h1",
        device_id="d1",
        type="fall",
        severity=AlertSeverity.HIGH,
        occurred_at=T0,
        created_at=T0,
        updated_at=T0,
    )
    session.add(alert)
    await session.flush()
    return alert


class TestReplay:
    """Given an alert's history, when it is folded in order,
    then the lifecycle fields are reconstructed."""

    def test_create_only(self) -> None:
        snapshot = replay([_entry(HistoryAction.CREATE, 0)])
        assert snapshot.state == AlertState.NEW
        assert snapshot.escalation_level == 0
        assert snapshot.created_at == T0

    def test_full_lifecycle(self) -> None:
        snapshot = replay(
            [
                _entry(HistoryAction.CREATE, 0),
                _entry(HistoryAction.NOTIFY, 0),
                _entry(HistoryAction.ACK, 2, actor="u1"),
                _entry(HistoryAction.ESCALATE, 5, actor="u2"),
                _entry(HistoryAction.ESCALATE, 6, actor="u2"),
                _entry(HistoryAction.ACK, 8, actor="u3"),
                _entry(HistoryAction.RESOLVE, 10, actor="u3"),
            ]
        )
        assert snapshot.state == AlertState.RESOLVED
        assert snapshot.escalation_level == 2
        assert snapshot.acknowledged_at == T0 + timedelta(minutes=2)
        assert snapshot.acknowledged_by == "u1"
        assert snapshot.escalated_at == T0 + timedelta(minutes=6)
        assert snapshot.resolved_at == T0 + timedelta(minutes=10)
        assert snapshot.resolved_by == "u3"
        assert snapshot.updated_at == T0 + timedelta(minutes=10)
        assert snapshot.notifications == 1

    def test_notify_entries_do_not_change_state(self) -> None:
        snapshot = replay([_entry(HistoryAction.CREATE, 0), _entry(HistoryAction.NOTIFY, 1)])
        assert snapshot.state == AlertState.NEW
        assert snapshot.updated_at == T0


class TestHistoryLedger:
    async def test_entries_are_returned_in_ts_then_id_order(self, db_session: AsyncSession) -> None:
        alert = await _persist_alert(db_session)
        ledger = HistoryLedger(db_session)

        await ledger.record(alert.id, HistoryAction.CREATE, ts=T0)
        later = await ledger.record(alert.id, HistoryAction.ACK, actor="u1", ts=T0 + timedelta(seconds=5))
        same_ts_first = await ledger.record(alert.id, HistoryAction.NOTIFY, ts=T0)
        await db_session.commit()

        entries = await ledger.history_for(alert.id)
        assert [e.action for e in entries] == [HistoryAction.CREATE, HistoryAction.NOTIFY, HistoryAction.ACK]
        assert entries[1].id == same_ts_first.id
        assert entries[2].id == later.id
        assert entries[0].id < entries[1].id

    async def test_record_defaults(self, db_session: AsyncSession) -> None:
        alert = await _persist_alert(db_session)
        entry = await HistoryLedger(db_session).record(alert.id, HistoryAction.CREATE)
        assert entry.id is not None
        assert entry.actor is None
        assert entry.meta == {}
        assert entry.ts.tzinfo is not None

    async def test_history_for_unknown_alert_is_empty(self, db_session: AsyncSession) -> None:
        assert await HistoryLedger(db_session).history_for(uuid.uuid4()) == []
