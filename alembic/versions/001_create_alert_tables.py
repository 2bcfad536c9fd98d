"""Create alerts and alert_history tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── alerts ───────────────────────────────────────────────
    op.create_table(
        "alerts",
        sa.Column("id", sa.UUID(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("house_id", sa.String(64), nullable=False),
        sa.Column("device_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column(
            "severity",
            sa.Enum("low", "medium", "high", "critical", name="alertseverity"),
            nullable=False,
        ),
        sa.Column(
            "state",
            sa.Enum("new", "acked", "escalated", "resolved", name="alertstate"),
            nullable=False,
            server_default="new",
        ),
        sa.Column(
            "status",
            sa.Enum("open", "acknowledged", "escalated", "resolved", name="alertstatus"),
            nullable=False,
            server_default="open",
        ),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("acknowledged_by", sa.String(255), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalation_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("resolved_by", sa.String(255), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("score IS NULL OR (score >= 0 AND score <= 1)", name="ck_alerts_score_range"),
        sa.CheckConstraint("escalation_level >= 0", name="ck_alerts_escalation_level"),
    )
    op.create_index("ix_alerts_tenant_id", "alerts", ["tenant_id"])
    op.create_index("ix_alerts_house_id", "alerts", ["house_id"])
    op.create_index("ix_alerts_device_type_state", "alerts", ["device_id", "type", "state"])
    op.create_index("ix_alerts_state", "alerts", ["state"])
    op.create_index("ix_alerts_occurred_at", "alerts", ["occurred_at"])

    # ── alert_history ────────────────────────────────────────
    op.create_table(
        "alert_history",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("alert_id", sa.UUID(), sa.ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "action",
            sa.Enum("create", "ack", "escalate", "resolve", "notify", name="historyaction"),
            nullable=False,
        ),
        sa.Column("actor", sa.String(255), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_alert_history_alert_id_ts", "alert_history", ["alert_id", "ts"])


def downgrade() -> None:
    op.drop_index("ix_alert_history_alert_id_ts", table_name="alert_history")
    op.drop_table("alert_history")
    op.drop_index("ix_alerts_occurred_at", table_name="alerts")
    op.drop_index("ix_alerts_state", table_name="alerts")
    op.drop_index("ix_alerts_device_type_state", table_name="alerts")
    op.drop_index("ix_alerts_house_id", table_name="alerts")
    op.drop_index("ix_alerts_tenant_id", table_name="alerts")
    op.drop_table("alerts")
    sa.Enum(name="historyaction").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="alertstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="alertstate").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="alertseverity").drop(op.get_bind(), checkfirst=True)
