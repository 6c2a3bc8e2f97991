"""Sync trigger and status endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from web.config import API_RATE_LIMIT
from ._deps import get_job_service, limiter, require_tenant

router = APIRouter(prefix="/sync", tags=["sync"])


def _accepted(job: dict, created: bool) -> dict:
    message = "Sync job queued" if created else "A sync is already in progress for this store"
    return {"status": "success", "message": message, "data": {"job": job}}


@router.post("/store/{store_id}", status_code=202)
@limiter.limit(API_RATE_LIMIT)
async def sync_store(
    request: Request,
    store_id: str,
    user: dict = Depends(require_tenant),
    jobs=Depends(get_job_service),
):
    """Queue a full sync (products, customers, orders)."""
    job, created = await jobs.trigger(user, store_id)
    return _accepted(job, created)


@router.get("/store/{store_id}/status")
@limiter.limit(API_RATE_LIMIT)
async def sync_status(
    request: Request,
    store_id: str,
    user: dict = Depends(require_tenant),
    jobs=Depends(get_job_service),
):
    return {"status": "success", "data": await jobs.get_status(user, store_id)}


@router.get("/store/{store_id}/jobs")
@limiter.limit(API_RATE_LIMIT)
async def list_sync_jobs(
    request: Request,
    store_id: str,
    limit: Optional[str] = Query(None),
    user: dict = Depends(require_tenant),
    jobs=Depends(get_job_service),
):
    """Job history, newest first."""
    history = await jobs.list_jobs(user, store_id, limit)
    return {"status": "success", "results": len(history), "data": {"jobs": history}}


@router.get("/store/{store_id}/events")
@limiter.limit(API_RATE_LIMIT)
async def list_store_events(
    request: Request,
    store_id: str,
    type: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    user: dict = Depends(require_tenant),
    jobs=Depends(get_job_service),
):
    events = await jobs.list_events(user, store_id, type, limit)
    return {"status": "success", "results": len(events), "data": {"events": events}}


@router.post("/store/{store_id}/{data_type}", status_code=202)
@limiter.limit(API_RATE_LIMIT)
async def sync_store_data_type(
    request: Request,
    store_id: str,
    data_type: str,
    user: dict = Depends(require_tenant),
    jobs=Depends(get_job_service),
):
    """Queue a sync of one entity stream."""
    job, created = await jobs.trigger(user, store_id, data_type)
    return _accepted(job, created)


@router.get("/jobs/{job_id}")
@limiter.limit(API_RATE_LIMIT)
async def get_sync_job(
    request: Request,
    job_id: str,
    user: dict = Depends(require_tenant),
    jobs=Depends(get_job_service),
):
    return {"status": "success", "data": {"job": await jobs.get_job(user, job_id)}}
