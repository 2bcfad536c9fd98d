"""Tests for the in-process realtime broadcast registry."""

from __future__ import annotations

import asyncio
import json

from carealert.alerting.broadcast import ConnectionRegistry


class FakeObserver:
    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.received: list[dict] = []

    async def send_text(self, data: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("socket closed")
        self.received.append(json.loads(data))


class TestConnectionRegistry:
    """Given registered observers, when an event is published,
    then every live observer receives the same envelope."""

    async def test_publish_reaches_all_observers(self) -> None:
        registry = ConnectionRegistry()
        a, b = FakeObserver(), FakeObserver()
        registry.register(a)
        registry.register(b)

        delivered = await registry.publish("alert.new", {"alert_id": "x1", "tenant_id": "t1"})

        assert delivered == 2
        assert a.received == [{"type": "alert.new", "payload": {"alert_id": "x1", "tenant_id": "t1"}}]
        assert b.received == a.received

    async def test_failing_observer_is_dropped(self) -> None:
        registry = ConnectionRegistry()
        good, bad = FakeObserver(), FakeObserver(fail=True)
        registry.register(good)
        registry.register(bad)

        delivered = await registry.publish("alert.acked", {"alert_id": "x1"})

        assert delivered == 1
        assert registry.active_connections == 1
        assert len(good.received) == 1

    async def test_slow_observer_times_out_and_is_dropped(self) -> None:
        registry = ConnectionRegistry(send_timeout=0.05)
        slow, fast = FakeObserver(delay=1.0), FakeObserver()
        registry.register(slow)
        registry.register(fast)

        delivered = await registry.publish("alert.new", {"alert_id": "x1"})

        assert delivered == 1
        assert registry.active_connections == 1
        assert fast.received

    async def test_publish_without_observers(self) -> None:
        assert await ConnectionRegistry().publish("alert.new", {}) == 0

    async def test_unregister_is_idempotent(self) -> None:
        registry = ConnectionRegistry()
        observer = FakeObserver()
        registry.register(observer)
        registry.unregister(observer)
        registry.unregister(observer)
        assert registry.active_connections == 0


class TestTenantScoping:
    async def test_unscoped_registry_ignores_tenant(self) -> None:
        registry = ConnectionRegistry()
        other = FakeObserver()
        registry.register(other, tenant_id="t2")
        await registry.publish("alert.new", {"alert_id": "x1", "tenant_id": "t1"})
        assert len(other.received) == 1

    async def test_scoped_registry_filters_by_tenant(self) -> None:
        registry = ConnectionRegistry(tenant_scoped=True)
        same, other, admin = FakeObserver(), FakeObserver(), FakeObserver()
        registry.register(same, tenant_id="t1")
        registry.register(other, tenant_id="t2")
        registry.register(admin)

        delivered = await registry.publish("alert.new", {"alert_id": "x1", "tenant_id": "t1"})

        assert delivered == 2
        assert len(same.received) == 1
        assert other.received == []
        assert len(admin.received) == 1
        assert registry.get_tenant_ids() == ["t1", "t2"]
