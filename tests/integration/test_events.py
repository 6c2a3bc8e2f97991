"""
Integration tests for core/events.py

Tests the publish/subscribe bus and the audit trail written from it.
"""
from typing import Any, Dict, List

import pytest

from core.events import (
    EventBus,
    SyncEvent,
    emit_cache_invalidated,
    emit_entity_synced,
    emit_sync_completed,
    emit_sync_failed,
    emit_sync_started,
    register_audit_handlers,
)
from core.observability import correlation_context


class TestEventBus:
    """Tests for EventBus class."""

    def setup_method(self):
        self.bus = EventBus()

    @pytest.mark.asyncio
    async def test_emit_without_handlers(self):
        event = await self.bus.emit(SyncEvent.SYNC_STARTED, {"store_id": "s1"})
        assert event.type == SyncEvent.SYNC_STARTED
        assert event.data == {"store_id": "s1"}

    @pytest.mark.asyncio
    async def test_decorator_subscription(self):
        received: List[Dict[str, Any]] = []

        @self.bus.on(SyncEvent.ORDERS_SYNCED)
        async def handler(data: dict):
            received.append(data)

        await self.bus.emit(SyncEvent.ORDERS_SYNCED, {"count": 10})
        await self.bus.emit(SyncEvent.PRODUCTS_SYNCED, {"count": 3})
        assert received == [{"count": 10}]

    @pytest.mark.asyncio
    async def test_wildcard_handler(self):
        seen = []

        async def everything(data: dict):
            seen.append(data["n"])

        self.bus.subscribe(None, everything)
        await self.bus.emit(SyncEvent.SYNC_STARTED, {"n": 1})
        await self.bus.emit(SyncEvent.STORE_CONNECTED, {"n": 2})
        assert seen == [1, 2]

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self):
        """One handler raising does not stop the others or the emitter."""
        seen = []

        async def broken(data: dict):
            raise RuntimeError("boom")

        async def healthy(data: dict):
            seen.append(data)

        self.bus.subscribe(SyncEvent.SYNC_FAILED, broken)
        self.bus.subscribe(SyncEvent.SYNC_FAILED, healthy)
        await self.bus.emit(SyncEvent.SYNC_FAILED, {"error": "x"})
        assert seen == [{"error": "x"}]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        seen = []

        async def handler(data: dict):
            seen.append(data)

        self.bus.subscribe(SyncEvent.SYNC_STARTED, handler)
        assert self.bus.unsubscribe(SyncEvent.SYNC_STARTED, handler)
        assert not self.bus.unsubscribe(SyncEvent.SYNC_STARTED, handler)
        await self.bus.emit(SyncEvent.SYNC_STARTED, {})
        assert seen == []

    @pytest.mark.asyncio
    async def test_history_bounded(self):
        bus = EventBus(max_history=3)
        for i in range(5):
            await bus.emit(SyncEvent.SYNC_STARTED, {"i": i})
        history = bus.get_history()
        assert [h["data"]["i"] for h in history] == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_history_filter_and_metadata(self):
        with correlation_context("req-1"):
            await self.bus.emit(SyncEvent.SYNC_STARTED, {"store_id": "s1"})
        await self.bus.emit(SyncEvent.SYNC_COMPLETED, {"store_id": "s1"})

        history = self.bus.get_history(SyncEvent.SYNC_STARTED)
        assert len(history) == 1
        assert history[0]["event_type"] == "sync.started"
        assert history[0]["metadata"]["correlation_id"] == "req-1"

    def test_handler_counts(self):
        async def handler(data: dict):
            pass

        self.bus.subscribe(SyncEvent.SYNC_STARTED, handler)
        self.bus.subscribe(None, handler)
        counts = self.bus.get_handlers()
        assert counts["sync.started"] == 1
        assert counts["*"] == 1

        self.bus.clear_handlers()
        assert self.bus.get_handlers() == {"*": 0}


class TestConvenienceEmitters:
    """Tests for the emit_* helpers."""

    @pytest.mark.asyncio
    async def test_payloads(self):
        bus = EventBus()
        started = await emit_sync_started("s1", "j1", "all", bus=bus, tenant_id="t1")
        assert started.data == {"store_id": "s1", "job_id": "j1", "data_type": "all", "tenant_id": "t1"}

        completed = await emit_sync_completed("s1", "j1", "all", {"total": 3}, 12.5, bus=bus)
        assert completed.type == SyncEvent.SYNC_COMPLETED
        assert completed.data["duration_ms"] == 12.5

        failed = await emit_sync_failed("s1", "j1", "orders", "boom", bus=bus)
        assert failed.data["error"] == "boom"

    @pytest.mark.asyncio
    async def test_entity_synced(self):
        bus = EventBus()
        event = await emit_entity_synced("s1", "customers", {"total": 7}, 3.0, bus=bus)
        assert event.type == SyncEvent.CUSTOMERS_SYNCED
        assert event.data["count"] == 7

    @pytest.mark.asyncio
    async def test_cache_invalidated_source(self):
        bus = EventBus()
        event = await emit_cache_invalidated(["analytics:s1:*"], "sync", bus=bus, count=4)
        assert event.metadata.source == "cache"
        assert event.data["count"] == 4


class TestAuditTrail:
    """Lifecycle events are persisted to the events table."""

    @pytest.mark.asyncio
    async def test_sync_lifecycle_recorded(self, tenant_store):
        db, tenant, shop = tenant_store
        bus = EventBus()
        register_audit_handlers(db, bus)

        await emit_sync_started(shop["id"], "j1", "all", bus=bus, tenant_id=tenant["id"])
        await emit_sync_completed(shop["id"], "j1", "all", {"total": 2}, 5.0, bus=bus, tenant_id=tenant["id"])

        rows = await db.list_events(shop["id"])
        assert {r["type"] for r in rows} == {"sync.started", "sync.completed"}
        completed = next(r for r in rows if r["type"] == "sync.completed")
        assert completed["tenant_id"] == tenant["id"]
        assert completed["payload"]["stats"] == {"total": 2}

    @pytest.mark.asyncio
    async def test_entity_events_not_recorded(self, tenant_store):
        db, _, shop = tenant_store
        bus = EventBus()
        register_audit_handlers(db, bus)

        await emit_entity_synced(shop["id"], "products", {"total": 1}, 1.0, bus=bus)
        assert await db.list_events(shop["id"]) == []

    @pytest.mark.asyncio
    async def test_filter_by_type(self, tenant_store):
        db, _, shop = tenant_store
        bus = EventBus()
        register_audit_handlers(db, bus)

        await bus.emit(SyncEvent.STORE_CONNECTED, {"store_id": shop["id"]})
        await bus.emit(SyncEvent.STORE_DISCONNECTED, {"store_id": shop["id"], "reason": "deleted"})

        rows = await db.list_events(shop["id"], event_type="store.disconnected")
        assert len(rows) == 1
        assert rows[0]["payload"]["reason"] == "deleted"
