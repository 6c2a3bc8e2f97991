"""
Sync job runner using APScheduler.

Every sync request becomes a persisted ``sync_jobs`` row and a one-off
APScheduler job. Optionally, an interval job enqueues a full sync for every
syncable store.

Features:
- One active job per store (a second trigger returns the existing job)
- Job lifecycle: pending -> running -> success | partial | failed
- ``last_synced_at`` set only once a job has finished
- Job execution history
- Prevents job pile-up (max_instances=1)
"""
import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from core.config import SyncConfig, config
from core.duckdb_store import DuckDBStore
from core.events import EventBus, SyncEvent, emit_sync_completed, emit_sync_failed, emit_sync_started, events
from core.models import SyncJobStatus, SyncResult, SyncStats, utcnow
from core.observability import correlation_context, get_logger, log_context, metrics
from core.sync_service import DataSyncService

logger = get_logger(__name__)

PERIODIC_JOB_ID = "periodic_sync"
ALL_DATA = "all"


def sync_job_key(store_id: str) -> str:
    """APScheduler job id for a store's sync."""
    return f"sync:{store_id}"


def decide_status(result: SyncResult) -> SyncJobStatus:
    """
    Terminal status for a finished sync run.

    - success: no item or page errors
    - failed: errors and nothing written
    - partial: anything in between
    """
    stats = result.stats
    if stats.errors == 0 and not result.aborted:
        return SyncJobStatus.SUCCESS
    if stats.succeeded == 0:
        return SyncJobStatus.FAILED
    return SyncJobStatus.PARTIAL


class ExecutionStatus(Enum):
    """Scheduler-level execution outcome."""
    SUCCESS = "success"
    FAILED = "failed"
    MISSED = "missed"


@dataclass
class JobExecution:
    """Record of a scheduler job execution."""
    job_id: str
    finished_at: datetime
    status: ExecutionStatus
    error: Optional[str] = None


class SyncJobRunner:
    """
    Runs sync jobs on an ``AsyncIOScheduler``.

    Usage:
        runner = SyncJobRunner(store, sync_service)
        await runner.start()

        job, created = await runner.enqueue(store_row)

        # Later...
        runner.shutdown()
    """

    def __init__(
        self,
        store: DuckDBStore,
        sync_service: DataSyncService,
        bus: Optional[EventBus] = None,
        sync_config: Optional[SyncConfig] = None,
    ):
        self.store = store
        self.sync_service = sync_service
        self.bus = bus or events
        self.sync_config = sync_config or config.sync
        self.timezone = ZoneInfo(self.sync_config.scheduler_timezone)

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._enqueue_lock = asyncio.Lock()
        self._history: List[JobExecution] = []
        self._max_history = 50  # Keep last N executions
        self._started = False

    # ═══════════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════════

    async def start(self) -> None:
        """Start the scheduler and register the periodic job."""
        if self._started:
            logger.warning("Sync job runner already started")
            return

        # Jobs live in memory only; anything still active is orphaned
        await self.store.fail_interrupted_sync_jobs()

        self._scheduler = AsyncIOScheduler(timezone=self.timezone)
        self._scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)

        if self.sync_config.interval_minutes > 0:
            self._add_job(
                job_id=PERIODIC_JOB_ID,
                name="Periodic Store Sync",
                func=self.enqueue_all_stores,
                trigger=IntervalTrigger(minutes=self.sync_config.interval_minutes),
            )
            logger.info(f"Periodic sync every {self.sync_config.interval_minutes} minutes")

        self._scheduler.start()
        self._started = True
        logger.info("Sync job runner started")

    def shutdown(self, wait: bool = False) -> None:
        """Shutdown the scheduler. Running syncs are not cancelled."""
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=wait)
            self._started = False
            logger.info("Sync job runner stopped")

    @property
    def is_running(self) -> bool:
        return self._started and self._scheduler is not None

    def _add_job(
        self,
        job_id: str,
        name: str,
        func: Callable,
        trigger,
        args: Optional[list] = None,
        max_instances: int = 1,
        coalesce: bool = True,
    ) -> None:
        """Add a job to the scheduler."""
        self._scheduler.add_job(
            func,
            trigger=trigger,
            args=args or [],
            id=job_id,
            name=name,
            max_instances=max_instances,
            coalesce=coalesce,
            misfire_grace_time=None,
            replace_existing=True,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # ENQUEUE
    # ═══════════════════════════════════════════════════════════════════════════

    async def enqueue(
        self,
        store_row: Dict[str, Any],
        data_type: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Create a ``pending`` job for a store and schedule it to run now.

        Args:
            store_row: Store record
            data_type: Entity type, or None for a full sync

        Returns:
            (job, created). ``created`` is False when the store already had a
            pending or running job; that job is returned unchanged.
        """
        store_id = store_row["id"]

        async with self._enqueue_lock:
            active = await self.store.get_active_sync_job(store_id)
            if active:
                logger.info(
                    f"Sync already in progress for store {store_row['domain']}",
                    extra={"store_id": store_id, "job_id": active["id"]},
                )
                return active, False

            job = await self.store.create_sync_job(store_id, store_row["tenant_id"], data_type or ALL_DATA)

        logger.info(
            f"Queued {job['data_type']} sync for store {store_row['domain']}",
            extra={"store_id": store_id, "job_id": job["id"]},
        )
        await self.bus.emit(
            SyncEvent.JOB_QUEUED,
            {"store_id": store_id, "job_id": job["id"], "data_type": job["data_type"]},
            source="scheduler",
        )

        if self._scheduler is not None:
            self._add_job(
                job_id=sync_job_key(store_id),
                name=f"Sync {store_row['domain']}",
                func=self.run_job,
                trigger=DateTrigger(run_date=datetime.now(self.timezone)),
                args=[job["id"]],
            )
        return job, True

    async def enqueue_all_stores(self) -> int:
        """Periodic job: queue a full sync for every syncable store."""
        queued = 0
        for store_row in await self.store.list_syncable_stores():
            _, created = await self.enqueue(store_row)
            queued += int(created)
        logger.info(f"Periodic sync queued {queued} stores")
        return queued

    # ═══════════════════════════════════════════════════════════════════════════
    # JOB EXECUTION
    # ═══════════════════════════════════════════════════════════════════════════

    async def run_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """
        Execute one persisted job to a terminal state.

        Returns:
            The finished job record, or None if the job does not exist
        """
        job = await self.store.get_sync_job(job_id)
        if job is None:
            logger.warning(f"Sync job {job_id} not found")
            return None

        store_id = job["store_id"]
        data_type = job["data_type"]

        with correlation_context(job_id), log_context(store_id=store_id, tenant_id=job["tenant_id"]):
            start_time = time.perf_counter()
            store_row = None
            finished = None
            status = SyncJobStatus.FAILED
            stats = SyncStats()
            message = None
            error = None

            try:
                store_row = await self.store.get_store(store_id)
                await self.store.mark_sync_job_running(job_id)
                await emit_sync_started(store_id, job_id, data_type, bus=self.bus, tenant_id=job["tenant_id"])

                if store_row is None:
                    error = "Store no longer exists"
                elif not store_row.get("access_token"):
                    error = "Store has no access token"
                else:
                    result = await self.sync_service.sync_store(
                        store_row, None if data_type == ALL_DATA else data_type
                    )
                    stats = result.stats
                    message = result.message
                    status = decide_status(result)
                    if status == SyncJobStatus.FAILED:
                        error = f"No items synced ({stats.errors} errors)"
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.error(f"Sync job {job_id} failed: {error}", exc_info=True, extra={"store_id": store_id})
            finally:
                elapsed_ms = round((time.perf_counter() - start_time) * 1000, 2)
                finished = await self.store.finish_sync_job(job_id, status, stats, message, error)
                if store_row is not None:
                    await self.store.set_last_synced_at(store_id, utcnow())

                logger.info(
                    f"Sync job {job_id} finished: {status.value}",
                    extra={"store_id": store_id, "duration_ms": elapsed_ms, "stats": stats.to_dict()},
                )
                metrics.record_sync(data_type, status.value, elapsed_ms)

                if status == SyncJobStatus.FAILED:
                    await emit_sync_failed(
                        store_id, job_id, data_type, error or "unknown error",
                        bus=self.bus, tenant_id=job["tenant_id"], stats=stats.to_dict(),
                    )
                else:
                    await emit_sync_completed(
                        store_id, job_id, data_type, stats.to_dict(), elapsed_ms,
                        bus=self.bus, tenant_id=job["tenant_id"], status=status.value,
                    )

        return finished

    # ═══════════════════════════════════════════════════════════════════════════
    # EVENT HANDLERS
    # ═══════════════════════════════════════════════════════════════════════════

    def _on_job_executed(self, event: JobExecutionEvent) -> None:
        self._add_execution(JobExecution(event.job_id, utcnow(), ExecutionStatus.SUCCESS))

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        error = str(event.exception) if event.exception else "Unknown error"
        self._add_execution(JobExecution(event.job_id, utcnow(), ExecutionStatus.FAILED, error))
        logger.error(f"Job {event.job_id} failed: {error}", extra={"job_id": event.job_id})

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        self._add_execution(JobExecution(event.job_id, utcnow(), ExecutionStatus.MISSED))
        logger.warning(f"Job {event.job_id} missed scheduled execution", extra={"job_id": event.job_id})

    def _add_execution(self, execution: JobExecution) -> None:
        """Add execution to history, keeping only last N."""
        self._history.append(execution)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

    # ═══════════════════════════════════════════════════════════════════════════
    # PUBLIC API
    # ═══════════════════════════════════════════════════════════════════════════

    def get_scheduled_jobs(self) -> List[Dict[str, Any]]:
        """Jobs currently waiting in the scheduler."""
        if not self._scheduler:
            return []
        return [
            {
                "id": job.id,
                "name": job.name,
                "trigger": str(job.trigger),
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self._scheduler.get_jobs()
        ]

    def get_history(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent scheduler executions, newest first."""
        return [
            {
                "job_id": e.job_id,
                "finished_at": e.finished_at.isoformat(),
                "status": e.status.value,
                "error": e.error,
            }
            for e in reversed(self._history[-limit:])
        ]
