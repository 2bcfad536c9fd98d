"""Alert service: ingestion and lifecycle transitions.

Ingestion runs deduplication, classification and creation in one
transaction and records the ``create`` history entry. Transitions are
compare-and-set updates on ``(id, state, version)`` followed by a history
append. Broadcast and notification dispatch happen only after commit and
never affect the caller's result.
"""

from __future__ import annotations

import enum
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from carealert.alerting.broadcast import BroadcastRegistry
from carealert.alerting.classifier import is_quiet_hours, resolve_severity, resolve_timezone
from carealert.alerting.dedup import insert_unless_duplicate
from carealert.alerting.dispatcher import NotificationQueue
from carealert.alerting.events import ALERT_NEW
from carealert.alerting.history import HistoryLedger
from carealert.alerting.state_machine import TRANSITIONS, Transition, available_actions, validate_transition
from carealert.core.config import Settings, get_settings
from carealert.core.errors import AlertEngineError, ConflictError, InternalError, NotFoundError, ValidationError
from carealert.core.models import (
    STATUS_FOR_STATE,
    Alert,
    AlertSeverity,
    AlertState,
    AlertStatus,
    HistoryAction,
)

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 50
MAX_SEARCH_LIMIT = 500

BULK_ACK_STATES = (AlertState.NEW, AlertState.ESCALATED)


def _coerce(enum_cls: type[enum.StrEnum], value: str, field: str) -> Any:
    try:
        return enum_cls(value.lower())
    except ValueError as exc:
        valid = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{field} must be one of: {valid}") from exc


def _require(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def transition_view(alert: Alert) -> dict[str, Any]:
    """Lifecycle fields returned after a transition."""
    data = alert.to_dict()
    return {
        key: data[key]
        for key in (
            "alert_id",
            "state",
            "status",
            "escalation_level",
            "acknowledged_at",
            "escalated_at",
            "resolved_at",
            "updated_at",
        )
    }


class AlertService:
    """Manages alert ingestion and the alert lifecycle.

    Args:
        session: Session the service's units of work run in.
        broadcaster: Registry that lifecycle events are published to.
        notifications: Queue newly created alerts are handed to.
        settings: Engine settings; defaults to the cached application settings.
    """

    def __init__(
        self,
        session: AsyncSession,
        broadcaster: BroadcastRegistry | None = None,
        notifications: NotificationQueue | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._broadcaster = broadcaster
        self._notifications = notifications
        self._settings = settings or get_settings()
        self._ledger = HistoryLedger(session)

    @asynccontextmanager
    async def _unit_of_work(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
            await self._session.commit()
        except AlertEngineError:
            await self._session.rollback()
            raise
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.exception("Store failure during %s", operation)
            raise InternalError(f"Store failure during {operation}") from e

    async def _publish(self, event_type: str, alert: Alert) -> None:
        if self._broadcaster is None:
            return
        try:
            await self._broadcaster.publish(event_type, alert.to_dict())
        except Exception:
            logger.exception("Broadcast of %s for alert %s failed", event_type, alert.id)

    async def ingest(
        self,
        house_id: str,
        device_id: str,
        type: str,
        message: str | None = None,
        score: float | None = None,
        duration: float | None = None,
        severity: str | None = None,
        ts: datetime | None = None,
        tenant_id: str | None = None,
        timezone: str | None = None,
    ) -> dict[str, Any]:
        """Ingest a device event.

        A future ``ts`` is clamped to the ingestion time so an alert never
        occurs after it was created.

        Returns:
            ``{alert_id, severity, state, score, occurred_at, deduplicated: False}``
            for a new alert, or ``{alert_id, deduplicated: True}`` when an
            open alert already covers the event.

        Raises:
            ValidationError: On missing ids/type, out-of-range score, negative
                duration, unknown timezone or invalid manual severity.
        """
        house_id = _require(house_id, "house_id")
        device_id = _require(device_id, "device_id")
        alert_type = _require(type, "type")
        if score is not None and not 0.0 <= score <= 1.0:
            raise ValidationError("score must be between 0 and 1")
        if duration is not None and duration < 0:
            raise ValidationError("duration must not be negative")

        now = datetime.now(UTC)
        occurred_at = min(_as_utc(ts), now) if ts is not None else now
        tz = resolve_timezone(timezone, self._settings.default_timezone)
        quiet = is_quiet_hours(occurred_at, tz, self._settings.quiet_hours_start, self._settings.quiet_hours_end)
        alert_severity, source, rule = resolve_severity(severity, alert_type, score, duration, quiet)

        values = {
            "id": uuid.uuid4(),
            "tenant_id": (tenant_id or "").strip() or self._settings.default_tenant_id,
            "house_id": house_id,
            "device_id": device_id,
            "type": alert_type,
            "severity": alert_severity,
            "state": AlertState.NEW,
            "status": AlertStatus.OPEN,
            "score": score,
            "message": message,
            "occurred_at": occurred_at,
            "created_at": now,
            "updated_at": now,
            "escalation_level": 0,
            "version": 1,
        }

        async with self._unit_of_work("ingest"):
            outcome = await insert_unless_duplicate(self._session, values, self._settings.dedup_window_seconds)
            if outcome.alert is not None:
                await self._ledger.record(
                    outcome.alert.id,
                    HistoryAction.CREATE,
                    meta={
                        "severity": alert_severity.value,
                        "severity_source": source.value,
                        "rule": rule,
                        "score": score,
                        "duration": duration,
                        "in_quiet_hours": quiet,
                        "new_state": AlertState.NEW.value,
                    },
                    ts=now,
                )

        if outcome.alert is None:
            return {"alert_id": str(outcome.duplicate_of), "deduplicated": True}

        alert = outcome.alert
        logger.info(
            "Alert %s created: type=%s severity=%s (%s) house=%s",
            alert.id,
            alert.type,
            alert_severity.value,
            rule or source.value,
            alert.house_id,
        )

        await self._publish(ALERT_NEW, alert)
        if self._notifications is not None:
            self._notifications.enqueue(alert)

        return {
            "alert_id": str(alert.id),
            "severity": alert_severity.value,
            "state": AlertState.NEW.value,
            "score": score,
            "occurred_at": occurred_at.isoformat(),
            "deduplicated": False,
        }

    async def _load(self, alert_id: uuid.UUID) -> Alert:
        result = await self._session.execute(
            select(Alert).where(Alert.id == alert_id).execution_options(populate_existing=True)
        )
        alert = result.scalar_one_or_none()
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        return alert

    async def _transition(
        self,
        alert_id: uuid.UUID,
        transition: Transition,
        actor: str | None,
        note: str | None,
    ) -> dict[str, Any]:
        spec = TRANSITIONS[transition]
        if spec.note_required and not (note and note.strip()):
            raise ValidationError(f"note is required to {transition.value} an alert")

        async with self._unit_of_work(transition.value):
            alert = await self._load(alert_id)
            prior = AlertState(alert.state)
            validate_transition(prior, transition)

            now = max(datetime.now(UTC), alert.updated_at)
            changes: dict[str, Any] = {
                "state": spec.target,
                "status": STATUS_FOR_STATE[spec.target],
                "updated_at": now,
                "version": alert.version + 1,
            }
            if transition == Transition.ACKNOWLEDGE and alert.acknowledged_at is None:
                changes.update(acknowledged_by=actor, acknowledged_at=now)
            elif transition == Transition.ESCALATE:
                changes.update(escalation_level=alert.escalation_level + 1, escalated_at=now)
            elif transition == Transition.RESOLVE:
                changes.update(resolved_by=actor, resolved_at=now)

            result = await self._session.execute(
                update(Alert)
                .where(Alert.id == alert.id, Alert.state == prior, Alert.version == alert.version)
                .values(**changes)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = await self._load(alert_id)
                raise ConflictError(
                    f"Alert {alert_id} changed concurrently (now {current.state})",
                    current_state=str(current.state),
                )

            await self._session.refresh(alert)
            await self._ledger.record(
                alert.id,
                spec.action,
                actor=actor,
                note=note,
                meta={
                    "prior_state": prior.value,
                    "new_state": spec.target.value,
                    "escalation_level": alert.escalation_level,
                },
                ts=now,
            )

        logger.info("Alert %s %s -> %s by %s", alert.id, prior.value, spec.target.value, actor or "system")
        await self._publish(spec.event, alert)
        return transition_view(alert)

    async def acknowledge(self, alert_id: uuid.UUID, actor: str | None = None, note: str | None = None) -> dict[str, Any]:
        """Acknowledge a ``new`` or ``escalated`` alert."""
        return await self._transition(alert_id, Transition.ACKNOWLEDGE, actor, note)

    async def escalate(self, alert_id: uuid.UUID, actor: str | None = None, note: str | None = None) -> dict[str, Any]:
        """Escalate a non-resolved alert, bumping its escalation level."""
        return await self._transition(alert_id, Transition.ESCALATE, actor, note)

    async def resolve(self, alert_id: uuid.UUID, actor: str | None = None, note: str | None = None) -> dict[str, Any]:
        """Resolve a non-resolved alert. A non-empty note is required."""
        return await self._transition(alert_id, Transition.RESOLVE, actor, note)

    async def bulk_acknowledge(
        self,
        tenant_id: str | None = None,
        house_id: str | None = None,
        device_id: str | None = None,
        severity: str | None = None,
        type: str | None = None,
        actor: str | None = None,
        note: str | None = None,
    ) -> dict[str, Any]:
        """Acknowledge every open alert matching the scope filter.

        Each alert commits independently; a failure on one is collected
        and does not stop the rest.

        Returns:
            ``{acknowledged: [ids], failed: [{alert_id, error}], count}``.
        """
        query = select(Alert.id).where(Alert.state.in_(BULK_ACK_STATES))
        if tenant_id:
            query = query.where(Alert.tenant_id == tenant_id)
        if house_id:
            query = query.where(Alert.house_id == house_id)
        if device_id:
            query = query.where(Alert.device_id == device_id)
        if severity:
            query = query.where(Alert.severity == _coerce(AlertSeverity, severity, "severity"))
        if type:
            query = query.where(Alert.type == type)

        async with self._unit_of_work("bulk acknowledge lookup"):
            result = await self._session.execute(query.order_by(Alert.occurred_at.asc()))
            alert_ids = list(result.scalars().all())

        acknowledged: list[str] = []
        failed: list[dict[str, str]] = []
        for alert_id in alert_ids:
            try:
                await self.acknowledge(alert_id, actor=actor, note=note)
            except AlertEngineError as e:
                failed.append({"alert_id": str(alert_id), "error": e.message})
                continue
            acknowledged.append(str(alert_id))

        logger.info("Bulk acknowledge: %d acknowledged, %d failed", len(acknowledged), len(failed))
        return {"acknowledged": acknowledged, "failed": failed, "count": len(acknowledged)}

    async def get_detail(self, alert_id: uuid.UUID) -> dict[str, Any]:
        """Return the alert, its history and the actions currently allowed."""
        try:
            alert = await self._load(alert_id)
            history = await self._ledger.history_for(alert_id)
        except SQLAlchemyError as e:
            logger.exception("Store failure loading alert %s", alert_id)
            raise InternalError("Store failure loading alert") from e
        return {
            "alert": alert.to_dict(),
            "history": [entry.to_dict() for entry in history],
            "available_actions": available_actions(alert.state),
        }

    async def search(
        self,
        severity: str | None = None,
        status: str | None = None,
        state: str | None = None,
        type: str | None = None,
        since: datetime | None = None,
        house_id: str | None = None,
        device_id: str | None = None,
        tenant_id: str | None = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> list[Alert]:
        """Search alerts, most recent ``occurred_at`` first."""
        if not 1 <= limit <= MAX_SEARCH_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_SEARCH_LIMIT}")

        query = select(Alert)
        if severity:
            query = query.where(Alert.severity == _coerce(AlertSeverity, severity, "severity"))
        if status:
            query = query.where(Alert.status == _coerce(AlertStatus, status, "status"))
        if state:
            query = query.where(Alert.state == _coerce(AlertState, state, "state"))
        if type:
            query = query.where(Alert.type == type)
        if since is not None:
            query = query.where(Alert.occurred_at >= _as_utc(since))
        if house_id:
            query = query.where(Alert.house_id == house_id)
        if device_id:
            query = query.where(Alert.device_id == device_id)
        if tenant_id:
            query = query.where(Alert.tenant_id == tenant_id)

        try:
            result = await self._session.execute(query.order_by(Alert.occurred_at.desc(), Alert.id).limit(limit))
        except SQLAlchemyError as e:
            logger.exception("Store failure searching alerts")
            raise InternalError("Store failure searching alerts") from e
        return list(result.scalars().all())
