"""WebSocket endpoint for realtime alert events.

Observers connect to ``/ws`` and receive every alert lifecycle event as
``{"type", "payload"}`` JSON. The server greets with ``hello``, answers
``ping`` with ``pong`` and sends a heartbeat after a period of client
silence.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect

from carealert.alerting.broadcast import ConnectionRegistry
from carealert.alerting.events import heartbeat_event, hello_event
from carealert.core.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws")
async def alerts_websocket(
    websocket: WebSocket,
    tenant_id: str | None = Query(default=None),
) -> None:
    """Stream alert events to a dashboard or other observer.

    Connection Limits:
        At most ``ws_max_connections`` observers per process. Exceeding
        the limit results in close code 1008 (Policy Violation).
    """
    registry: ConnectionRegistry = websocket.app.state.broadcast_registry
    settings = getattr(websocket.app.state, "settings", None) or get_settings()

    if registry.active_connections >= settings.ws_max_connections:
        logger.warning("WebSocket connection limit reached (%d)", settings.ws_max_connections)
        await websocket.close(code=1008, reason=f"Connection limit reached ({settings.ws_max_connections} max)")
        return

    await websocket.accept()
    await websocket.send_text(json.dumps(hello_event()))
    registry.register(websocket, tenant_id=tenant_id)

    try:
        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=settings.ws_heartbeat_interval)
                if data == "ping":
                    await websocket.send_text("pong")
            except TimeoutError:
                await websocket.send_json(heartbeat_event())
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WebSocket error")
    finally:
        registry.unregister(websocket)


@router.get("/api/v1/ws/status")
async def websocket_status(request: Request) -> dict[str, Any]:
    """Get WebSocket connection status."""
    registry: ConnectionRegistry = request.app.state.broadcast_registry
    return {
        "active_connections": registry.active_connections,
        "tenant_ids": registry.get_tenant_ids(),
    }
