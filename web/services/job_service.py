"""Sync job endpoints' service: access checks around the job runner."""
from typing import Any, Dict, List, Optional

from core.duckdb_store import DuckDBStore
from core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from core.scheduler import SyncJobRunner
from core.validators import validate_data_type, validate_limit
from web.services.store_service import get_accessible_store


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def public_job(job: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if job is None:
        return None
    return {
        "id": job["id"],
        "storeId": job["store_id"],
        "dataType": job["data_type"],
        "status": job["status"],
        "stats": job["stats"],
        "message": job.get("message"),
        "error": job.get("error"),
        "createdAt": _iso(job.get("created_at")),
        "startedAt": _iso(job.get("started_at")),
        "finishedAt": _iso(job.get("finished_at")),
    }


class JobService:

    def __init__(self, store: DuckDBStore, runner: SyncJobRunner):
        self.store = store
        self.runner = runner

    async def trigger(self, user: Dict[str, Any], store_id: str, data_type: Optional[str] = None):
        """
        Queue a sync for a store.

        Returns:
            (job, created); an already active job is returned with created False

        Raises:
            ValidationError: Unknown data type
            BadRequestError: Store has no token or is inactive
        """
        entity = validate_data_type(data_type).value if data_type is not None else None
        row = await get_accessible_store(self.store, user, store_id)

        if not row.get("access_token"):
            raise BadRequestError("Store is not connected. Please reconnect it with a valid access token.")
        if not row.get("is_active"):
            raise BadRequestError("Store is inactive. Activate it before syncing.")

        job, created = await self.runner.enqueue(row, entity)
        return public_job(job), created

    async def get_status(self, user: Dict[str, Any], store_id: str) -> Dict[str, Any]:
        row = await get_accessible_store(self.store, user, store_id)
        counts = await self.store.count_store_entities(store_id)
        job = await self.store.get_latest_sync_job(store_id)
        return {
            "storeId": row["id"],
            "storeName": row["name"],
            "domain": row["domain"],
            "lastSyncedAt": _iso(row.get("last_synced_at")),
            "stats": counts,
            "job": public_job(job),
        }

    async def get_job(self, user: Dict[str, Any], job_id: str) -> Dict[str, Any]:
        job = await self.store.get_sync_job(job_id)
        if job is None:
            raise NotFoundError("Sync job not found")
        if job["tenant_id"] != user.get("tenant_id"):
            raise ForbiddenError("You do not have permission to view this sync job")
        return public_job(job)

    async def list_jobs(self, user: Dict[str, Any], store_id: str, limit=None) -> List[Dict[str, Any]]:
        await get_accessible_store(self.store, user, store_id)
        jobs = await self.store.list_sync_jobs(store_id, validate_limit(limit, default=20))
        return [public_job(j) for j in jobs]

    async def list_events(
        self, user: Dict[str, Any], store_id: str, event_type: Optional[str] = None, limit=None
    ) -> List[Dict[str, Any]]:
        """Audit trail of a store's connection and sync lifecycle."""
        await get_accessible_store(self.store, user, store_id)
        rows = await self.store.list_events(store_id, event_type, validate_limit(limit, default=50))
        return [
            {
                "id": r["id"],
                "type": r["type"],
                "payload": r["payload"],
                "createdAt": _iso(r["created_at"]),
            }
            for r in rows
        ]
