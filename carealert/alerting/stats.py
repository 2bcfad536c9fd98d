"""Alert statistics: counts, response times, trends, live load and patterns.

Mean time to acknowledge (MTTA) and to resolve (MTTR) are measured from
``occurred_at``. Every figure is aggregated in the database; the few
expressions PostgreSQL and SQLite spell differently (epoch seconds and
the UTC day or hour of a timestamp) come from ``_TimeExpressions``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import Integer, Select, cast, extract, func, literal_column, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from carealert.core.errors import InternalError, ValidationError
from carealert.core.models import DEDUP_OPEN_STATES, Alert, AlertSeverity, AlertState

logger = logging.getLogger(__name__)

MAX_TREND_DAYS = 365
DEFAULT_PATTERN_DAYS = 7

# Thresholds for the pattern report.
FREQUENT_TYPE_MIN_COUNT = 5
FREQUENT_TYPE_LIMIT = 10
DEVICE_CLUSTER_MIN_COUNT = 3

ACTIVE_STATES = DEDUP_OPEN_STATES
HIGH_SEVERITIES = (AlertSeverity.HIGH, AlertSeverity.CRITICAL)

# Julian day number of 1970-01-01T00:00:00Z.
_UNIX_EPOCH_JULIAN_DAY = 2440587.5


class _TimeExpressions:
    """Dialect-specific SQL for timestamp arithmetic and bucketing."""

    def __init__(self, dialect_name: str) -> None:
        self.postgres = dialect_name == "postgresql"

    def epoch(self, column: Any) -> Any:
        """Seconds since the Unix epoch."""
        if self.postgres:
            return extract("epoch", column)
        return (func.julianday(column) - _UNIX_EPOCH_JULIAN_DAY) * 86400.0

    def seconds_between(self, later: Any, earlier: Any) -> Any:
        return self.epoch(later) - self.epoch(earlier)

    def day(self, column: Any) -> Any:
        """UTC calendar day as ``YYYY-MM-DD``."""
        if self.postgres:
            utc = func.timezone(literal_column("'UTC'"), column)
            return func.to_char(utc, literal_column("'YYYY-MM-DD'"))
        return func.strftime(literal_column("'%Y-%m-%d'"), column)

    def hour(self, column: Any) -> Any:
        """UTC hour of day, 0-23."""
        if self.postgres:
            return extract("hour", func.timezone(literal_column("'UTC'"), column))
        return cast(func.strftime(literal_column("'%H'"), column), Integer)


def _round(value: Any) -> float | None:
    return round(float(value), 2) if value is not None else None


def _check_days(days: int) -> None:
    if not 1 <= days <= MAX_TREND_DAYS:
        raise ValidationError(f"days must be between 1 and {MAX_TREND_DAYS}")


class AlertStats:
    """Read-only aggregate queries over the alert store."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._time = _TimeExpressions(session.get_bind().dialect.name)

    @staticmethod
    def _scoped(
        query: Select,
        tenant_id: str | None = None,
        house_id: str | None = None,
        device_id: str | None = None,
        since: datetime | None = None,
    ) -> Select:
        if tenant_id:
            query = query.where(Alert.tenant_id == tenant_id)
        if house_id:
            query = query.where(Alert.house_id == house_id)
        if device_id:
            query = query.where(Alert.device_id == device_id)
        if since is not None:
            query = query.where(Alert.occurred_at >= since)
        return query

    async def _all(self, query: Select) -> list[Any]:
        try:
            result = await self._session.execute(query)
        except SQLAlchemyError as e:
            logger.exception("Store failure computing alert statistics")
            raise InternalError("Store failure computing alert statistics") from e
        return list(result.all())

    async def summary(self, tenant_id: str | None = None, house_id: str | None = None) -> dict[str, Any]:
        """Totals, open count, MTTA/MTTR and counts by severity and state."""
        totals = (
            await self._all(
                self._scoped(
                    select(
                        func.count().label("total"),
                        func.count().filter(Alert.state != AlertState.RESOLVED).label("open_count"),
                        func.avg(self._time.seconds_between(Alert.acknowledged_at, Alert.occurred_at)).label("mtta"),
                        func.avg(self._time.seconds_between(Alert.resolved_at, Alert.occurred_at)).label("mttr"),
                    ),
                    tenant_id,
                    house_id,
                )
            )
        )[0]

        by_severity = {s.value: 0 for s in AlertSeverity}
        for severity, count in await self._all(
            self._scoped(select(Alert.severity, func.count()).group_by(Alert.severity), tenant_id, house_id)
        ):
            by_severity[AlertSeverity(severity).value] = count

        by_state = {s.value: 0 for s in AlertState}
        for state, count in await self._all(
            self._scoped(select(Alert.state, func.count()).group_by(Alert.state), tenant_id, house_id)
        ):
            by_state[AlertState(state).value] = count

        return {
            "total": totals.total,
            "open_count": totals.open_count,
            "mtta_seconds": _round(totals.mtta),
            "mttr_seconds": _round(totals.mttr),
            "by_severity": by_severity,
            "by_state": by_state,
        }

    async def response_times(self, tenant_id: str | None = None, house_id: str | None = None) -> list[dict[str, Any]]:
        """Average acknowledge/resolve time per severity, most severe first."""
        query = select(
            Alert.severity,
            func.count().label("total"),
            func.avg(self._time.seconds_between(Alert.acknowledged_at, Alert.occurred_at)).label("ack"),
            func.avg(self._time.seconds_between(Alert.resolved_at, Alert.occurred_at)).label("resolve"),
        ).group_by(Alert.severity)
        rows = {AlertSeverity(row.severity): row for row in await self._all(self._scoped(query, tenant_id, house_id))}

        metrics = []
        for severity in reversed(AlertSeverity):
            row = rows.get(severity)
            metrics.append(
                {
                    "severity": severity.value,
                    "total_alerts": row.total if row else 0,
                    "avg_ack_time_sec": _round(row.ack) if row else None,
                    "avg_resolve_time_sec": _round(row.resolve) if row else None,
                }
            )
        return metrics

    async def trends(
        self,
        days: int = 30,
        tenant_id: str | None = None,
        house_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Per-day alert counts by severity, plus how many are resolved.

        Days are UTC calendar days of ``occurred_at``; days without
        alerts are omitted.
        """
        _check_days(days)
        since = datetime.now(UTC) - timedelta(days=days)
        day = self._time.day(Alert.occurred_at)
        query = (
            select(
                day.label("date"),
                func.count().label("total"),
                func.count().filter(Alert.state == AlertState.RESOLVED).label("resolved"),
                *(func.count().filter(Alert.severity == s).label(s.value) for s in AlertSeverity),
            )
            .group_by(day)
            .order_by(day)
        )

        points = []
        for row in await self._all(self._scoped(query, tenant_id, house_id, since=since)):
            point = {"date": row.date, "total": row.total, "resolved": row.resolved}
            point.update({s.value: row._mapping[s.value] for s in AlertSeverity})
            points.append(point)
        return points

    async def realtime(self, tenant_id: str | None = None, house_id: str | None = None) -> dict[str, Any]:
        """Current load: active alerts, recent volume and the age of open alerts.

        Active means ``new`` or ``escalated``; the age is averaged over
        active alerts and is None when there are none.
        """
        now = datetime.now(UTC)
        active = Alert.state.in_(ACTIVE_STATES)
        query = select(
            func.count().filter(active).label("active_alerts"),
            func.count().filter(Alert.occurred_at > now - timedelta(hours=1)).label("alerts_last_hour"),
            func.count().filter(Alert.occurred_at > now - timedelta(hours=24)).label("alerts_last_24h"),
            func.count().filter(active, Alert.severity == AlertSeverity.CRITICAL).label("critical_active"),
            func.avg(self._time.epoch(Alert.occurred_at)).filter(active).label("avg_epoch"),
        )
        row = (await self._all(self._scoped(query, tenant_id, house_id)))[0]

        avg_age = None
        if row.avg_epoch is not None:
            avg_age = _round(max(0.0, now.timestamp() - float(row.avg_epoch)))
        return {
            "active_alerts": row.active_alerts,
            "alerts_last_hour": row.alerts_last_hour,
            "alerts_last_24h": row.alerts_last_24h,
            "critical_active": row.critical_active,
            "avg_age_seconds": avg_age,
        }

    async def patterns(
        self,
        days: int = DEFAULT_PATTERN_DAYS,
        house_id: str | None = None,
        device_id: str | None = None,
        tenant_id: str | None = None,
    ) -> dict[str, Any]:
        """Recurring alert patterns over the last ``days`` days.

        Returns:
            ``frequent_alerts``: types seen more than five times (top ten),
            with average score and how many were high or critical.
            ``time_patterns``: counts per UTC hour of day.
            ``device_clusters``: devices with more than three alerts and the
            distinct types they raised.
        """
        _check_days(days)
        since = datetime.now(UTC) - timedelta(days=days)

        def scoped(query: Select) -> Select:
            return self._scoped(query, tenant_id, house_id, device_id, since)

        occurrences = func.count().label("occurrences")
        frequent = scoped(
            select(
                Alert.type,
                occurrences,
                func.avg(Alert.score).label("avg_score"),
                func.count().filter(Alert.severity.in_(HIGH_SEVERITIES)).label("high_severity_count"),
            )
            .group_by(Alert.type)
            .having(func.count() > FREQUENT_TYPE_MIN_COUNT)
            .order_by(occurrences.desc(), Alert.type)
            .limit(FREQUENT_TYPE_LIMIT)
        )
        frequent_alerts = [
            {
                "type": row.type,
                "count": row.occurrences,
                "avg_score": _round(row.avg_score),
                "high_severity_count": row.high_severity_count,
            }
            for row in await self._all(frequent)
        ]

        hour = self._time.hour(Alert.occurred_at)
        by_hour = scoped(
            select(hour.label("hour"), func.count().label("occurrences"), func.avg(Alert.score).label("avg_score"))
            .group_by(hour)
            .order_by(hour)
        )
        time_patterns = [
            {"hour": int(row.hour), "count": row.occurrences, "avg_score": _round(row.avg_score)}
            for row in await self._all(by_hour)
        ]

        # One row per device and type, folded into one entry per device.
        per_type = scoped(
            select(
                Alert.device_id,
                Alert.type,
                func.count().label("occurrences"),
                func.sum(Alert.score).label("score_sum"),
                func.count(Alert.score).label("scored"),
            ).group_by(Alert.device_id, Alert.type)
        )
        devices: dict[str, dict[str, Any]] = {}
        for row in await self._all(per_type):
            device = devices.setdefault(row.device_id, {"alert_count": 0, "types": set(), "score_sum": 0.0, "scored": 0})
            device["alert_count"] += row.occurrences
            device["types"].add(row.type)
            device["score_sum"] += float(row.score_sum or 0.0)
            device["scored"] += row.scored

        device_clusters = [
            {
                "device_id": dev_id,
                "alert_count": d["alert_count"],
                "alert_types": sorted(d["types"]),
                "avg_score": _round(d["score_sum"] / d["scored"]) if d["scored"] else None,
            }
            for dev_id, d in devices.items()
            if d["alert_count"] > DEVICE_CLUSTER_MIN_COUNT
        ]
        device_clusters.sort(key=lambda c: (-c["alert_count"], c["device_id"]))

        return {
            "frequent_alerts": frequent_alerts,
            "time_patterns": time_patterns,
            "device_clusters": device_clusters,
        }
