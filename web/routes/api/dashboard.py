"""
Per-store analytics endpoints.

Responses are the raw metric payloads (no ``{status, data}`` envelope), as
the dashboard charts consume them directly.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from web.config import API_RATE_LIMIT
from web.services.store_service import get_accessible_store
from ._deps import get_dashboard_service, get_store, limiter, require_tenant

router = APIRouter(prefix="/dashboard/stores/{store_id}", tags=["dashboard"])


async def accessible_store_id(
    store_id: str,
    user: dict = Depends(require_tenant),
    store=Depends(get_store),
) -> str:
    """Path store id after the tenant check."""
    await get_accessible_store(store, user, store_id)
    return store_id


@router.get("/analytics")
@limiter.limit(API_RATE_LIMIT)
async def analytics_summary(
    request: Request,
    store_id: str = Depends(accessible_store_id),
    dashboard=Depends(get_dashboard_service),
):
    return await dashboard.get_summary(store_id)


@router.get("/top-products")
@limiter.limit(API_RATE_LIMIT)
async def top_products(
    request: Request,
    limit: Optional[str] = Query(None, description="Default 5, max 50"),
    store_id: str = Depends(accessible_store_id),
    dashboard=Depends(get_dashboard_service),
):
    """Products ranked by units sold."""
    return await dashboard.get_top_products(store_id, limit)


@router.get("/recent-orders")
@limiter.limit(API_RATE_LIMIT)
async def recent_orders(
    request: Request,
    limit: Optional[str] = Query(None, description="Default 5, max 50"),
    store_id: str = Depends(accessible_store_id),
    dashboard=Depends(get_dashboard_service),
):
    return await dashboard.get_recent_orders(store_id, limit)


@router.get("/customer-insights")
@limiter.limit(API_RATE_LIMIT)
async def customer_insights(
    request: Request,
    store_id: str = Depends(accessible_store_id),
    dashboard=Depends(get_dashboard_service),
):
    """Top 5 customers by spend."""
    return await dashboard.get_customer_insights(store_id)


@router.get("/sales")
@limiter.limit(API_RATE_LIMIT)
async def sales(
    request: Request,
    period: Optional[str] = Query(None, description="day, week (default) or month"),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    store_id: str = Depends(accessible_store_id),
    dashboard=Depends(get_dashboard_service),
):
    return await dashboard.get_sales(store_id, period, startDate, endDate)


@router.get("/customer-split")
@limiter.limit(API_RATE_LIMIT)
async def customer_split(
    request: Request,
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    store_id: str = Depends(accessible_store_id),
    dashboard=Depends(get_dashboard_service),
):
    """New vs returning customers' orders and revenue."""
    return await dashboard.get_customer_split(store_id, startDate, endDate)


@router.get("/sales-by-type")
@limiter.limit(API_RATE_LIMIT)
async def sales_by_type(
    request: Request,
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    groupBy: Optional[str] = Query(None, description="productType (default) or vendor"),
    store_id: str = Depends(accessible_store_id),
    dashboard=Depends(get_dashboard_service),
):
    return await dashboard.get_sales_by_type(store_id, startDate, endDate, groupBy)


@router.get("/traffic-heatmap")
@limiter.limit(API_RATE_LIMIT)
async def traffic_heatmap(
    request: Request,
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    metric: Optional[str] = Query(None, description="orders (default) or revenue"),
    store_id: str = Depends(accessible_store_id),
    dashboard=Depends(get_dashboard_service),
):
    return await dashboard.get_traffic_heatmap(store_id, startDate, endDate, metric)


@router.get("/discounts")
@limiter.limit(API_RATE_LIMIT)
async def discounts(
    request: Request,
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    store_id: str = Depends(accessible_store_id),
    dashboard=Depends(get_dashboard_service),
):
    return await dashboard.get_discounts(store_id, startDate, endDate)
