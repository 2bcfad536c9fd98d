"""Append-only alert history ledger.

Every accepted state transition and every notification attempt is
recorded as an ``AlertHistory`` row. Entries are never updated or
deleted; folding them in ``(ts, id)`` order reconstructs the alert's
lifecycle (see ``replay``).
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carealert.core.models import AlertHistory, AlertState, HistoryAction

logger = logging.getLogger(__name__)


class HistoryLedger:
    """Writes and reads the alert history ledger within a session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        alert_id: uuid.UUID,
        action: HistoryAction,
        actor: str | None = None,
        note: str | None = None,
        meta: dict[str, Any] | None = None,
        ts: datetime | None = None,
    ) -> AlertHistory:
        """Append one history entry.

        The entry is flushed so it receives its sequence id; committing
        is left to the caller's unit of work.

        Args:
            alert_id: Alert the entry belongs to.
            action: What happened.
            actor: User id, or None for the system.
            note: Free-text note.
            meta: Structured metadata (severity, prior state, delivery result).
            ts: Entry timestamp; defaults to now.

        Returns:
            The persisted entry.
        """
        entry = AlertHistory(
            alert_id=alert_id,
            action=action,
            actor=actor,
            note=note,
            meta=meta or {},
            ts=ts or datetime.now(UTC),
        )
        self._session.add(entry)
        await self._session.flush()
        logger.debug("History %s recorded for alert %s (actor=%s)", action.value, alert_id, actor or "system")
        return entry

    async def history_for(self, alert_id: uuid.UUID) -> list[AlertHistory]:
        """Return all entries for an alert, oldest first."""
        result = await self._session.execute(
            select(AlertHistory)
            .where(AlertHistory.alert_id == alert_id)
            .order_by(AlertHistory.ts.asc(), AlertHistory.id.asc())
        )
        return list(result.scalars().all())


@dataclass
class ReplayedAlert:
    """Alert lifecycle fields reconstructed from history."""

    state: AlertState | None = None
    escalation_level: int = 0
    created_at: datetime | None = None
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    escalated_at: datetime | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    updated_at: datetime | None = None
    notifications: int = 0


def replay(entries: Iterable[AlertHistory]) -> ReplayedAlert:
    """Fold history entries, in order, into the alert's lifecycle state.

    ``notify`` entries are counted but do not change the lifecycle.
    """
    snapshot = ReplayedAlert()
    for entry in entries:
        action = HistoryAction(entry.action)
        if action == HistoryAction.NOTIFY:
            snapshot.notifications += 1
            continue

        if action == HistoryAction.CREATE:
            snapshot.state = AlertState.NEW
            snapshot.created_at = entry.ts
        elif action == HistoryAction.ACK:
            snapshot.state = AlertState.ACKED
            if snapshot.acknowledged_at is None:
                snapshot.acknowledged_at = entry.ts
                snapshot.acknowledged_by = entry.actor
        elif action == HistoryAction.ESCALATE:
            snapshot.state = AlertState.ESCALATED
            snapshot.escalation_level += 1
            snapshot.escalated_at = entry.ts
        elif action == HistoryAction.RESOLVE:
            snapshot.state = AlertState.RESOLVED
            snapshot.resolved_at = entry.ts
            snapshot.resolved_by = entry.actor
        snapshot.updated_at = entry.ts
    return snapshot
