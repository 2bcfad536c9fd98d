"""Request and response schemas for the alert API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class IngestRequest(BaseModel):
    """A device event to ingest."""

    house_id: str = Field(..., min_length=1, max_length=64)
    device_id: str = Field(..., min_length=1, max_length=64)
    type: str = Field(..., min_length=1, max_length=50)
    message: str | None = None
    score: float | None = Field(default=None, ge=0.0, le=1.0)
    duration: float | None = Field(default=None, ge=0.0)
    severity: str | None = None
    ts: datetime | None = None
    tenant_id: str | None = Field(default=None, max_length=64)
    timezone: str | None = None


class SearchRequest(BaseModel):
    """Alert search filters."""

    severity: str | None = None
    status: str | None = None
    state: str | None = None
    type: str | None = None
    since: datetime | None = None
    house_id: str | None = None
    device_id: str | None = None
    tenant_id: str | None = None
    limit: int = Field(default=50, ge=1, le=500)


class SearchResponse(BaseModel):
    items: list[dict[str, Any]]
    count: int


class TransitionRequest(BaseModel):
    """Body for acknowledge, escalate and resolve."""

    actor: str | None = None
    note: str | None = None


class TransitionResponse(BaseModel):
    """Lifecycle fields after a successful transition."""

    alert_id: str
    state: str
    status: str
    escalation_level: int
    acknowledged_at: str | None = None
    escalated_at: str | None = None
    resolved_at: str | None = None
    updated_at: str


class BulkAckRequest(BaseModel):
    """Scope filter for bulk acknowledge; all fields optional."""

    tenant_id: str | None = None
    house_id: str | None = None
    device_id: str | None = None
    severity: str | None = None
    type: str | None = None
    actor: str | None = None
    note: str | None = None


class BulkAckFailure(BaseModel):
    alert_id: str
    error: str


class BulkAckResponse(BaseModel):
    acknowledged: list[str]
    failed: list[BulkAckFailure]
    count: int


class AlertDetailResponse(BaseModel):
    alert: dict[str, Any]
    history: list[dict[str, Any]]
    available_actions: list[str]


class StatsResponse(BaseModel):
    """Aggregate alert statistics."""

    total: int
    open_count: int
    mtta_seconds: float | None = None
    mttr_seconds: float | None = None
    by_severity: dict[str, int]
    by_state: dict[str, int]


class ResponseTimeMetric(BaseModel):
    severity: str
    total_alerts: int
    avg_ack_time_sec: float | None = None
    avg_resolve_time_sec: float | None = None


class TrendPoint(BaseModel):
    """Alert counts for one UTC day."""

    date: str
    total: int
    resolved: int
    low: int
    medium: int
    high: int
    critical: int


class RealtimeStatsResponse(BaseModel):
    """Current alert load; active means new or escalated."""

    active_alerts: int
    alerts_last_hour: int
    alerts_last_24h: int
    critical_active: int
    avg_age_seconds: float | None = None


class FrequentAlertType(BaseModel):
    type: str
    count: int
    avg_score: float | None = None
    high_severity_count: int


class HourPattern(BaseModel):
    hour: int
    count: int
    avg_score: float | None = None


class DeviceCluster(BaseModel):
    device_id: str
    alert_count: int
    alert_types: list[str]
    avg_score: float | None = None


class PatternsResponse(BaseModel):
    frequent_alerts: list[FrequentAlertType]
    time_patterns: list[HourPattern]
    device_clusters: list[DeviceCluster]
