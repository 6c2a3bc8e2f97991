"""
Integration tests for core/scheduler.py

The runner is mostly exercised without starting APScheduler: queued jobs stay
pending and tests execute them with ``run_job``.
"""
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from core.config import SyncConfig
from core.events import EventBus, SyncEvent
from core.models import SyncJobStatus, SyncResult, SyncStats
from core.scheduler import PERIODIC_JOB_ID, SyncJobRunner, decide_status, sync_job_key
from core.sync_service import DataSyncService


@pytest.fixture
def runner_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def runner(tenant_store, client_factory, runner_bus) -> SyncJobRunner:
    db, _, _ = tenant_store
    sync_config = SyncConfig(page_size=50, interval_minutes=0)
    service = DataSyncService(db, client_factory, bus=runner_bus, sync_config=sync_config)
    return SyncJobRunner(db, service, bus=runner_bus, sync_config=sync_config)


class TestDecideStatus:
    """Terminal status from a run's counters."""

    @pytest.mark.parametrize("stats,aborted,expected", [
        (SyncStats(total=3, created=3), False, SyncJobStatus.SUCCESS),
        (SyncStats(), False, SyncJobStatus.SUCCESS),
        (SyncStats(total=3, created=2, errors=1), False, SyncJobStatus.PARTIAL),
        (SyncStats(total=2, updated=2), True, SyncJobStatus.PARTIAL),
        (SyncStats(total=1, errors=1), False, SyncJobStatus.FAILED),
        (SyncStats(errors=4), True, SyncJobStatus.FAILED),
    ])
    def test_status(self, stats, aborted, expected):
        assert decide_status(SyncResult(stats, aborted=aborted)) == expected


class TestEnqueue:
    """One active job per store."""

    @pytest.mark.asyncio
    async def test_creates_pending_job(self, runner, tenant_store, runner_bus):
        db, tenant, shop = tenant_store
        job, created = await runner.enqueue(shop, "products")

        assert created
        assert job["status"] == "pending"
        assert job["data_type"] == "products"
        assert job["tenant_id"] == tenant["id"]
        assert runner_bus.get_history(SyncEvent.JOB_QUEUED)[0]["data"]["job_id"] == job["id"]

    @pytest.mark.asyncio
    async def test_full_sync_label(self, runner, tenant_store):
        _, _, shop = tenant_store
        job, _ = await runner.enqueue(shop)
        assert job["data_type"] == "all"

    @pytest.mark.asyncio
    async def test_second_trigger_returns_active_job(self, runner, tenant_store):
        db, _, shop = tenant_store
        first, _ = await runner.enqueue(shop, "orders")
        second, created = await runner.enqueue(shop, "products")

        assert not created
        assert second["id"] == first["id"]
        assert len(await db.list_sync_jobs(shop["id"])) == 1

    @pytest.mark.asyncio
    async def test_enqueue_all_stores_skips_inactive(self, runner, tenant_store):
        db, tenant, shop = tenant_store
        await db.create_store(tenant["id"], "second.myshopify.com", "Second", access_token="tok")
        await db.create_store(tenant["id"], "gone.myshopify.com", "Gone")

        assert await runner.enqueue_all_stores() == 2
        assert await runner.enqueue_all_stores() == 0


class TestRunJob:
    """Executing persisted jobs to a terminal state."""

    @pytest.mark.asyncio
    async def test_success(self, runner, tenant_store, client_factory, payloads, runner_bus):
        db, _, shop = tenant_store
        client_factory.collections["products"] = [payloads.product(i) for i in range(1, 4)]

        job, _ = await runner.enqueue(shop, "products")
        assert (await db.get_store(shop["id"]))["last_synced_at"] is None

        finished = await runner.run_job(job["id"])

        assert finished["status"] == "success"
        assert finished["stats"] == {"total": 3, "created": 3, "updated": 0, "errors": 0}
        assert finished["message"] == "Synced 3 products (3 created, 0 updated, 0 errors)"
        assert finished["started_at"] is not None
        assert finished["finished_at"] is not None
        assert (await db.get_store(shop["id"]))["last_synced_at"] is not None

        completed = runner_bus.get_history(SyncEvent.SYNC_COMPLETED)
        assert completed[-1]["data"]["job_id"] == job["id"]
        assert completed[-1]["data"]["status"] == "success"

    @pytest.mark.asyncio
    async def test_partial(self, runner, tenant_store, client_factory, payloads):
        _, _, shop = tenant_store
        client_factory.collections["products"] = [payloads.product(1), {"title": "no id"}]

        job, _ = await runner.enqueue(shop, "products")
        finished = await runner.run_job(job["id"])
        assert finished["status"] == "partial"
        assert finished["stats"]["errors"] == 1

    @pytest.mark.asyncio
    async def test_failed_when_nothing_synced(self, runner, tenant_store, client_factory, runner_bus):
        db, _, shop = tenant_store
        client_factory.fail("customers", since_id=0, times=4)

        job, _ = await runner.enqueue(shop, "customers")
        finished = await runner.run_job(job["id"])

        assert finished["status"] == "failed"
        assert finished["error"] == "No items synced (4 errors)"
        # A failed run still counts as the last sync attempt
        assert (await db.get_store(shop["id"]))["last_synced_at"] is not None
        assert runner_bus.get_history(SyncEvent.SYNC_FAILED)[-1]["data"]["job_id"] == job["id"]

    @pytest.mark.asyncio
    async def test_unexpected_error(self, runner, tenant_store):
        _, _, shop = tenant_store
        runner.sync_service.sync_store = AsyncMock(side_effect=RuntimeError("disk full"))

        job, _ = await runner.enqueue(shop)
        finished = await runner.run_job(job["id"])
        assert finished["status"] == "failed"
        assert finished["error"] == "disk full"

    @pytest.mark.asyncio
    async def test_last_synced_at_untouched_while_running(self, runner, tenant_store):
        db, _, shop = tenant_store
        previous = datetime(2026, 1, 1, 12, 0)
        await db.set_last_synced_at(shop["id"], previous)
        seen = []

        async def sync_store(store_row, data_type=None):
            seen.append((await db.get_store(shop["id"]))["last_synced_at"])
            return SyncResult(SyncStats(total=1, created=1), label="items")

        runner.sync_service.sync_store = sync_store
        job, _ = await runner.enqueue(shop)
        await runner.run_job(job["id"])

        assert seen == [previous]
        assert (await db.get_store(shop["id"]))["last_synced_at"] > previous

    @pytest.mark.asyncio
    async def test_bookkeeping_error_still_finishes_job(self, runner, tenant_store):
        db, _, shop = tenant_store
        job, _ = await runner.enqueue(shop)
        db.mark_sync_job_running = AsyncMock(side_effect=RuntimeError("database is locked"))

        finished = await runner.run_job(job["id"])

        assert finished["status"] == "failed"
        assert finished["error"] == "database is locked"
        assert await db.get_active_sync_job(shop["id"]) is None

    @pytest.mark.asyncio
    async def test_store_without_token(self, runner, tenant_store):
        db, _, shop = tenant_store
        job, _ = await runner.enqueue(shop)
        await db.disconnect_store(shop["id"])

        finished = await runner.run_job(job["id"])
        assert finished["status"] == "failed"
        assert finished["error"] == "Store has no access token"

    @pytest.mark.asyncio
    async def test_unknown_job(self, runner):
        assert await runner.run_job("missing") is None

    @pytest.mark.asyncio
    async def test_store_free_for_new_job_after_finish(self, runner, tenant_store):
        _, _, shop = tenant_store
        job, _ = await runner.enqueue(shop, "orders")
        await runner.run_job(job["id"])

        again, created = await runner.enqueue(shop, "orders")
        assert created
        assert again["id"] != job["id"]


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_fails_orphaned_jobs(self, runner, tenant_store):
        db, tenant, shop = tenant_store
        orphan = await db.create_sync_job(shop["id"], tenant["id"], "all")

        await runner.start()
        try:
            assert runner.is_running
            assert (await db.get_sync_job(orphan["id"]))["status"] == "failed"
            assert runner.get_scheduled_jobs() == []
        finally:
            runner.shutdown()
        assert not runner.is_running

    @pytest.mark.asyncio
    async def test_periodic_job_registered(self, tenant_store, client_factory):
        db, _, _ = tenant_store
        sync_config = SyncConfig(interval_minutes=15)
        runner = SyncJobRunner(db, DataSyncService(db, client_factory, sync_config=sync_config),
                               bus=EventBus(), sync_config=sync_config)

        await runner.start()
        try:
            jobs = runner.get_scheduled_jobs()
            assert [j["id"] for j in jobs] == [PERIODIC_JOB_ID]
        finally:
            runner.shutdown()

    def test_job_key(self):
        assert sync_job_key("abc") == "sync:abc"

    def test_history_starts_empty(self, runner):
        assert runner.get_history() == []
