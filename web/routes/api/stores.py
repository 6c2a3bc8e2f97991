"""Store connection endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from web.config import API_RATE_LIMIT
from web.schemas import StoreConnectRequest, StoreUpdateRequest
from ._deps import get_store_service, limiter, require_tenant

router = APIRouter(prefix="/stores", tags=["stores"])


@router.post("", status_code=201)
@limiter.limit(API_RATE_LIMIT)
async def connect_store(
    request: Request,
    body: StoreConnectRequest,
    user: dict = Depends(require_tenant),
    stores=Depends(get_store_service),
):
    """Connect a Shopify store after verifying its credentials."""
    store = await stores.connect_store(user, body.domain, body.accessToken, body.name)
    return {"status": "success", "data": {"store": store}}


@router.get("")
@limiter.limit(API_RATE_LIMIT)
async def list_stores(
    request: Request,
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    user: dict = Depends(require_tenant),
    stores=Depends(get_store_service),
):
    result = await stores.list_stores(user, page, limit, search)
    return {"status": "success", "data": result}


@router.get("/{store_id}")
@limiter.limit(API_RATE_LIMIT)
async def get_store(
    request: Request,
    store_id: str,
    user: dict = Depends(require_tenant),
    stores=Depends(get_store_service),
):
    store = await stores.get_store_detail(user, store_id)
    return {"status": "success", "data": {"store": store}}


@router.get("/{store_id}/stats")
@limiter.limit(API_RATE_LIMIT)
async def get_store_stats(
    request: Request,
    store_id: str,
    user: dict = Depends(require_tenant),
    stores=Depends(get_store_service),
):
    """Counts, revenue, recent orders and top customers."""
    return {"status": "success", "data": await stores.get_store_stats(user, store_id)}


@router.patch("/{store_id}")
@limiter.limit(API_RATE_LIMIT)
async def update_store(
    request: Request,
    store_id: str,
    body: StoreUpdateRequest,
    user: dict = Depends(require_tenant),
    stores=Depends(get_store_service),
):
    store = await stores.update_store(user, store_id, body.name, body.isActive, body.accessToken)
    return {"status": "success", "data": {"store": store}}


@router.delete("/{store_id}", status_code=204)
@limiter.limit(API_RATE_LIMIT)
async def delete_store(
    request: Request,
    store_id: str,
    user: dict = Depends(require_tenant),
    stores=Depends(get_store_service),
):
    await stores.delete_store(user, store_id)
    return Response(status_code=204)
