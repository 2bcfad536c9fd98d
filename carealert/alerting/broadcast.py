"""Realtime broadcast bus for alert lifecycle events.

Publishers see the ``BroadcastRegistry`` protocol only. The in-process
``ConnectionRegistry`` fans each event out to the registered WebSocket
observers; delivery is best effort with no acknowledgment or replay.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from carealert.alerting.events import envelope

logger = logging.getLogger(__name__)


class Observer(Protocol):
    """Anything that can receive a serialized event (e.g. a WebSocket)."""

    async def send_text(self, data: str) -> None: ...


class BroadcastRegistry(Protocol):
    """Registry of live observers that events are published to."""

    def register(self, observer: Observer, tenant_id: str | None = None) -> None: ...

    def unregister(self, observer: Observer) -> None: ...

    async def publish(self, event_type: str, payload: Any) -> int: ...


class ConnectionRegistry:
    """Manages live observer connections in this process.

    Args:
        send_timeout: Seconds allowed for a single observer send.
        tenant_scoped: When True, an event whose payload names a tenant is
            only sent to observers registered for that tenant, plus
            observers registered without one.
    """

    def __init__(self, send_timeout: float = 2.0, tenant_scoped: bool = False) -> None:
        # Keyed by id(): WebSocket objects are Mappings and not hashable.
        self._observers: dict[int, tuple[Observer, str | None]] = {}
        self._send_timeout = send_timeout
        self._tenant_scoped = tenant_scoped

    def register(self, observer: Observer, tenant_id: str | None = None) -> None:
        self._observers[id(observer)] = (observer, tenant_id)
        logger.info("Observer registered (tenant=%s, active=%d)", tenant_id or "*", len(self._observers))

    def unregister(self, observer: Observer) -> None:
        if self._observers.pop(id(observer), None) is not None:
            logger.info("Observer unregistered (active=%d)", len(self._observers))

    @property
    def active_connections(self) -> int:
        return len(self._observers)

    def get_tenant_ids(self) -> list[str]:
        return sorted({tenant for _, tenant in self._observers.values() if tenant})

    def _recipients(self, payload: Any) -> list[Observer]:
        tenant_id = payload.get("tenant_id") if isinstance(payload, dict) else None
        if not self._tenant_scoped or tenant_id is None:
            return [obs for obs, _ in self._observers.values()]
        return [obs for obs, scope in self._observers.values() if scope is None or scope == tenant_id]

    async def _send(self, observer: Observer, data: str) -> bool:
        try:
            await asyncio.wait_for(observer.send_text(data), timeout=self._send_timeout)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Dropping observer after failed send: %s", exc or type(exc).__name__)
            return False
        return True

    async def publish(self, event_type: str, payload: Any) -> int:
        """Send ``{type, payload}`` to every matching observer.

        Observers whose send fails or times out are unregistered. Never
        raises to the publisher.

        Returns:
            Number of observers the event was delivered to.
        """
        targets = self._recipients(payload)
        if not targets:
            return 0

        try:
            data = json.dumps(envelope(event_type, payload), default=str)
        except (TypeError, ValueError):
            logger.exception("Could not serialize %s event", event_type)
            return 0

        results = await asyncio.gather(*(self._send(obs, data) for obs in targets))
        for observer, ok in zip(targets, results, strict=True):
            if not ok:
                self._observers.pop(id(observer), None)

        delivered = sum(results)
        logger.debug("Published %s to %d/%d observers", event_type, delivered, len(targets))
        return delivered
