"""Alert models: severity/state enums, Alert, and the append-only AlertHistory ledger."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, CheckConstraint, Enum, Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carealert.core.database import Base, UTCDateTime


class AlertSeverity(enum.StrEnum):
    """Ordinal urgency assigned at ingestion."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertState(enum.StrEnum):
    """Lifecycle states of an alert."""

    NEW = "new"
    ACKED = "acked"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class AlertStatus(enum.StrEnum):
    """Display status mirrored from the lifecycle state."""

    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class HistoryAction(enum.StrEnum):
    """Actions recorded in the alert history ledger."""

    CREATE = "create"
    ACK = "ack"
    ESCALATE = "escalate"
    RESOLVE = "resolve"
    NOTIFY = "notify"


class SeveritySource(enum.StrEnum):
    """Where an alert's severity came from."""

    MANUAL = "manual"
    CLASSIFIED = "classified"


STATUS_FOR_STATE: dict[AlertState, AlertStatus] = {
    AlertState.NEW: AlertStatus.OPEN,
    AlertState.ACKED: AlertStatus.ACKNOWLEDGED,
    AlertState.ESCALATED: AlertStatus.ESCALATED,
    AlertState.RESOLVED: AlertStatus.RESOLVED,
}

# States that still suppress duplicate ingestion of the same device/type.
DEDUP_OPEN_STATES: tuple[AlertState, ...] = (AlertState.NEW, AlertState.ESCALATED)


def _enum_values(e: type[enum.Enum]) -> list[str]:
    return [x.value for x in e]


class Alert(Base):
    """A single classified occurrence of a monitored event with its own lifecycle."""

    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_tenant_id", "tenant_id"),
        Index("ix_alerts_house_id", "house_id"),
        Index("ix_alerts_device_type_state", "device_id", "type", "state"),
        Index("ix_alerts_state", "state"),
        Index("ix_alerts_occurred_at", "occurred_at"),
        CheckConstraint("score IS NULL OR (score >= 0 AND score <= 1)", name="ck_alerts_score_range"),
        CheckConstraint("escalation_level >= 0", name="ck_alerts_escalation_level"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    house_id: Mapped[str] = mapped_column(String(64), nullable=False)
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[AlertSeverity] = mapped_column(
        Enum(AlertSeverity, values_callable=_enum_values, name="alertseverity"), nullable=False
    )
    state: Mapped[AlertState] = mapped_column(
        Enum(AlertState, values_callable=_enum_values, name="alertstate"),
        default=AlertState.NEW,
        nullable=False,
    )
    status: Mapped[AlertStatus] = mapped_column(
        Enum(AlertStatus, values_callable=_enum_values, name="alertstatus"),
        default=AlertStatus.OPEN,
        nullable=False,
    )
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    acknowledged_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    escalation_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    @property
    def is_terminal(self) -> bool:
        """Whether the alert has been resolved."""
        return self.state == AlertState.RESOLVED

    def to_dict(self) -> dict[str, Any]:
        """Serialize the alert for API responses and broadcast payloads."""
        return {
            "alert_id": str(self.id),
            "tenant_id": self.tenant_id,
            "house_id": self.house_id,
            "device_id": self.device_id,
            "type": self.type,
            "severity": str(self.severity),
            "state": str(self.state),
            "status": str(self.status),
            "score": self.score,
            "message": self.message,
            "occurred_at": _iso(self.occurred_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": _iso(self.acknowledged_at),
            "escalated_at": _iso(self.escalated_at),
            "escalation_level": self.escalation_level,
            "resolved_by": self.resolved_by,
            "resolved_at": _iso(self.resolved_at),
        }

    def __repr__(self) -> str:
        return f"<Alert(id={self.id}, type={self.type}, severity={self.severity}, state={self.state})>"


class AlertHistory(Base):
    """An immutable entry in an alert's audit trail."""

    __tablename__ = "alert_history"
    __table_args__ = (Index("ix_alert_history_alert_id_ts", "alert_id", "ts"),)

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    alert_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False)
    action: Mapped[HistoryAction] = mapped_column(
        Enum(HistoryAction, values_callable=_enum_values, name="historyaction"), nullable=False
    )
    actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ts: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the history entry."""
        return {
            "id": self.id,
            "alert_id": str(self.alert_id),
            "action": str(self.action),
            "actor": self.actor,
            "note": self.note,
            "meta": self.meta or {},
            "ts": _iso(self.ts),
        }

    def __repr__(self) -> str:
        return f"<AlertHistory(id={self.id}, alert_id={self.alert_id}, action={self.action})>"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
