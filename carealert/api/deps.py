"""Shared FastAPI dependencies.

Sessions, the broadcast registry and the notification queue all live on
``app.state``; routes reach them through these dependencies.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from carealert.alerting.broadcast import BroadcastRegistry
from carealert.alerting.dispatcher import NotificationQueue
from carealert.alerting.service import AlertService
from carealert.core.config import Settings, get_settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session from the factory stored in app.state, scoped to the request."""
    session_factory = request.app.state.db_session_factory
    async with session_factory() as session:
        yield session


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with, falling back to the cached ones."""
    return getattr(request.app.state, "settings", None) or get_settings()


def get_broadcast_registry(request: Request) -> BroadcastRegistry | None:
    return getattr(request.app.state, "broadcast_registry", None)


def get_notification_queue(request: Request) -> NotificationQueue | None:
    return getattr(request.app.state, "notification_queue", None)


def get_alert_service(
    request: Request,
    session: AsyncSession = Depends(get_session),
    broadcaster: BroadcastRegistry | None = Depends(get_broadcast_registry),
    notifications: NotificationQueue | None = Depends(get_notification_queue),
) -> AlertService:
    """Build an ``AlertService`` bound to the request session."""
    return AlertService(session, broadcaster=broadcaster, notifications=notifications, settings=get_app_settings(request))
