"""Health check endpoint.

Reports database reachability, realtime observer count and the
notification backlog.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from carealert.api.version import API_VERSION

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/api/v1/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Check the health of the service.

    Returns:
        JSON object with overall status and per-service health:
        {
            "status": "healthy" | "unhealthy",
            "services": {"database": "up" | "down"},
            "websocket_connections": 0,
            "notification_backlog": 0,
            "version": "1.0.0"
        }
    """
    services: dict[str, str] = {}

    try:
        async with request.app.state.db_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            services["database"] = "up"
    except (SQLAlchemyError, ConnectionError, OSError):
        logger.warning("Database health check failed")
        services["database"] = "down"

    registry = getattr(request.app.state, "broadcast_registry", None)
    queue = getattr(request.app.state, "notification_queue", None)

    return {
        "status": "healthy" if services["database"] == "up" else "unhealthy",
        "services": services,
        "websocket_connections": registry.active_connections if registry is not None else 0,
        "notification_backlog": queue.pending if queue is not None else 0,
        "version": API_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
    }
