"""DuckDBStore sync job methods."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from core.duckdb_constants import fetch_dict, fetch_dicts, from_json, new_id, to_json
from core.models import SyncJobStatus, SyncStats, utcnow
from core.observability import get_logger

logger = get_logger(__name__)

JOB_COLUMNS = (
    "id, store_id, tenant_id, data_type, status, stats, message, error, "
    "created_at, started_at, finished_at"
)

_ACTIVE = (SyncJobStatus.PENDING.value, SyncJobStatus.RUNNING.value)


def _decode(job: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if job is not None:
        job["stats"] = SyncStats.from_dict(from_json(job["stats"])).to_dict()
    return job


class SyncJobsMixin:

    async def create_sync_job(self, store_id: str, tenant_id: str, data_type: str) -> Dict[str, Any]:
        """Insert a ``pending`` job."""
        job_id = new_id()
        async with self.connection() as conn:
            conn.execute(f"""
                INSERT INTO sync_jobs ({JOB_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, NULL, NULL, ?, NULL, NULL)
            """, [
                job_id, store_id, tenant_id, data_type, SyncJobStatus.PENDING.value,
                to_json(SyncStats().to_dict()), utcnow(),
            ])
            return _decode(fetch_dict(conn.execute(
                f"SELECT {JOB_COLUMNS} FROM sync_jobs WHERE id = ?", [job_id]
            )))

    async def get_sync_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        async with self.connection() as conn:
            return _decode(fetch_dict(conn.execute(
                f"SELECT {JOB_COLUMNS} FROM sync_jobs WHERE id = ?", [job_id]
            )))

    async def get_active_sync_job(self, store_id: str) -> Optional[Dict[str, Any]]:
        """The store's pending or running job, if any."""
        async with self.connection() as conn:
            return _decode(fetch_dict(conn.execute(f"""
                SELECT {JOB_COLUMNS} FROM sync_jobs
                WHERE store_id = ? AND status IN (?, ?)
                ORDER BY created_at DESC
                LIMIT 1
            """, [store_id, *_ACTIVE])))

    async def get_latest_sync_job(self, store_id: str) -> Optional[Dict[str, Any]]:
        async with self.connection() as conn:
            return _decode(fetch_dict(conn.execute(f"""
                SELECT {JOB_COLUMNS} FROM sync_jobs
                WHERE store_id = ?
                ORDER BY created_at DESC
                LIMIT 1
            """, [store_id])))

    async def list_sync_jobs(self, store_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        async with self.connection() as conn:
            jobs = fetch_dicts(conn.execute(f"""
                SELECT {JOB_COLUMNS} FROM sync_jobs
                WHERE store_id = ?
                ORDER BY created_at DESC
                LIMIT ?
            """, [store_id, limit]))
        return [_decode(job) for job in jobs]

    async def mark_sync_job_running(self, job_id: str) -> None:
        async with self.connection() as conn:
            conn.execute(
                "UPDATE sync_jobs SET status = ?, started_at = ? WHERE id = ?",
                [SyncJobStatus.RUNNING.value, utcnow(), job_id],
            )

    async def finish_sync_job(
        self,
        job_id: str,
        status: SyncJobStatus,
        stats: SyncStats,
        message: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Move a job to a terminal state."""
        async with self.connection() as conn:
            conn.execute("""
                UPDATE sync_jobs
                SET status = ?, stats = ?, message = ?, error = ?, finished_at = ?
                WHERE id = ?
            """, [SyncJobStatus(status).value, to_json(stats.to_dict()), message, error, utcnow(), job_id])
            return _decode(fetch_dict(conn.execute(
                f"SELECT {JOB_COLUMNS} FROM sync_jobs WHERE id = ?", [job_id]
            )))

    async def fail_interrupted_sync_jobs(self) -> int:
        """
        Fail jobs left pending/running by a previous process.

        The scheduler keeps jobs in memory, so nothing will ever pick them up.
        """
        async with self.connection() as conn:
            count = conn.execute(
                "SELECT COUNT(*) FROM sync_jobs WHERE status IN (?, ?)", list(_ACTIVE)
            ).fetchone()[0]
            if count:
                conn.execute("""
                    UPDATE sync_jobs
                    SET status = ?, error = 'Interrupted by restart', finished_at = ?
                    WHERE status IN (?, ?)
                """, [SyncJobStatus.FAILED.value, utcnow(), *_ACTIVE])
        if count:
            logger.warning(f"Marked {count} interrupted sync jobs as failed")
        return count
