"""Alert API endpoints.

Ingestion, search, statistics, detail and the acknowledge / escalate /
resolve lifecycle. Static paths are registered before ``/{alert_id}``.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from carealert.alerting.service import AlertService
from carealert.alerting.stats import AlertStats
from carealert.api.deps import get_alert_service, get_session
from carealert.api.schemas.alerts import (
    AlertDetailResponse,
    BulkAckRequest,
    BulkAckResponse,
    IngestRequest,
    PatternsResponse,
    RealtimeStatsResponse,
    ResponseTimeMetric,
    SearchRequest,
    SearchResponse,
    StatsResponse,
    TransitionRequest,
    TransitionResponse,
    TrendPoint,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.post("/ingest", status_code=status.HTTP_201_CREATED)
async def ingest_alert(
    body: IngestRequest,
    response: Response,
    service: AlertService = Depends(get_alert_service),
) -> dict[str, Any]:
    """Ingest a device event.

    Returns 201 with the new alert's classification, or 200 with the id
    of the open alert that already covers the event.
    """
    result = await service.ingest(**body.model_dump())
    if result["deduplicated"]:
        response.status_code = status.HTTP_200_OK
    return result


@router.post("/search", response_model=SearchResponse)
async def search_alerts(
    body: SearchRequest,
    service: AlertService = Depends(get_alert_service),
) -> dict[str, Any]:
    """Search alerts, most recent first."""
    alerts = await service.search(**body.model_dump())
    items = [alert.to_dict() for alert in alerts]
    return {"items": items, "count": len(items)}


@router.post("/bulk-ack", response_model=BulkAckResponse)
async def bulk_acknowledge(
    body: BulkAckRequest,
    service: AlertService = Depends(get_alert_service),
) -> dict[str, Any]:
    """Acknowledge every open alert matching the filter."""
    return await service.bulk_acknowledge(**body.model_dump())


@router.get("/stats", response_model=StatsResponse)
async def alert_stats(
    tenant_id: str | None = Query(default=None),
    house_id: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """Totals, open count, MTTA/MTTR and counts by severity and state."""
    return await AlertStats(session).summary(tenant_id=tenant_id, house_id=house_id)


@router.get("/stats/response-times", response_model=list[ResponseTimeMetric])
async def alert_response_times(
    tenant_id: str | None = Query(default=None),
    house_id: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> list[dict[str, Any]]:
    """Average acknowledge and resolve times per severity."""
    return await AlertStats(session).response_times(tenant_id=tenant_id, house_id=house_id)


@router.get("/stats/trends", response_model=list[TrendPoint])
async def alert_trends(
    days: int = Query(default=30, ge=1, le=365),
    tenant_id: str | None = Query(default=None),
    house_id: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> list[dict[str, Any]]:
    """Daily alert counts over the last ``days`` days."""
    return await AlertStats(session).trends(days=days, tenant_id=tenant_id, house_id=house_id)


@router.get("/stats/realtime", response_model=RealtimeStatsResponse)
async def alert_realtime_stats(
    tenant_id: str | None = Query(default=None),
    house_id: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """Active alerts, recent volume and the average age of open alerts."""
    return await AlertStats(session).realtime(tenant_id=tenant_id, house_id=house_id)


@router.get("/stats/patterns", response_model=PatternsResponse)
async def alert_patterns(
    days: int = Query(default=7, ge=1, le=365),
    house_id: str | None = Query(default=None),
    device_id: str | None = Query(default=None),
    tenant_id: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """Frequent alert types, hour-of-day distribution and noisy devices."""
    return await AlertStats(session).patterns(days=days, house_id=house_id, device_id=device_id, tenant_id=tenant_id)


@router.get("/{alert_id}", response_model=AlertDetailResponse)
async def get_alert(
    alert_id: UUID,
    service: AlertService = Depends(get_alert_service),
) -> dict[str, Any]:
    """Alert with its full history and the actions currently allowed."""
    return await service.get_detail(alert_id)


@router.post("/{alert_id}/ack", response_model=TransitionResponse)
async def acknowledge_alert(
    alert_id: UUID,
    body: TransitionRequest | None = None,
    service: AlertService = Depends(get_alert_service),
) -> dict[str, Any]:
    body = body or TransitionRequest()
    return await service.acknowledge(alert_id, actor=body.actor, note=body.note)


@router.post("/{alert_id}/escalate", response_model=TransitionResponse)
async def escalate_alert(
    alert_id: UUID,
    body: TransitionRequest | None = None,
    service: AlertService = Depends(get_alert_service),
) -> dict[str, Any]:
    body = body or TransitionRequest()
    return await service.escalate(alert_id, actor=body.actor, note=body.note)


@router.post("/{alert_id}/resolve", response_model=TransitionResponse)
async def resolve_alert(
    alert_id: UUID,
    body: TransitionRequest,
    service: AlertService = Depends(get_alert_service),
) -> dict[str, Any]:
    """Resolve an alert. A non-empty ``note`` is required."""
    return await service.resolve(alert_id, actor=body.actor, note=body.note)
