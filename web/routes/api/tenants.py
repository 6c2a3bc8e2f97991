"""Tenant and tenant membership endpoints."""
from fastapi import APIRouter, Depends, Request, Response

from web.config import API_RATE_LIMIT
from web.schemas import TenantRequest, TenantUserRequest
from ._deps import get_current_user, get_tenant_service, limiter

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.post("", status_code=201)
@limiter.limit(API_RATE_LIMIT)
async def create_tenant(
    request: Request,
    body: TenantRequest,
    user: dict = Depends(get_current_user),
    tenants=Depends(get_tenant_service),
):
    """Create a tenant and move the caller into it."""
    tenant = await tenants.create_tenant(user, body.name)
    return {"status": "success", "data": {"tenant": tenant}}


@router.get("/{tenant_id}")
@limiter.limit(API_RATE_LIMIT)
async def get_tenant(
    request: Request,
    tenant_id: str,
    user: dict = Depends(get_current_user),
    tenants=Depends(get_tenant_service),
):
    tenant = await tenants.get_tenant(user, tenant_id)
    return {"status": "success", "data": {"tenant": tenant}}


@router.patch("/{tenant_id}")
@limiter.limit(API_RATE_LIMIT)
async def update_tenant(
    request: Request,
    tenant_id: str,
    body: TenantRequest,
    user: dict = Depends(get_current_user),
    tenants=Depends(get_tenant_service),
):
    tenant = await tenants.update_tenant(user, tenant_id, body.name)
    return {"status": "success", "data": {"tenant": tenant}}


@router.delete("/{tenant_id}", status_code=204)
@limiter.limit(API_RATE_LIMIT)
async def delete_tenant(
    request: Request,
    tenant_id: str,
    user: dict = Depends(get_current_user),
    tenants=Depends(get_tenant_service),
):
    """Delete the tenant with its stores, synced data and users."""
    await tenants.delete_tenant(user, tenant_id)
    return Response(status_code=204)


# ─── Members ─────────────────────────────────────────────────────────────────

@router.get("/{tenant_id}/users")
@limiter.limit(API_RATE_LIMIT)
async def list_tenant_users(
    request: Request,
    tenant_id: str,
    user: dict = Depends(get_current_user),
    tenants=Depends(get_tenant_service),
):
    users = await tenants.list_users(user, tenant_id)
    return {"status": "success", "results": len(users), "data": {"users": users}}


@router.post("/{tenant_id}/users")
@limiter.limit(API_RATE_LIMIT)
async def add_tenant_user(
    request: Request,
    tenant_id: str,
    body: TenantUserRequest,
    user: dict = Depends(get_current_user),
    tenants=Depends(get_tenant_service),
):
    added = await tenants.add_user(user, tenant_id, body.email)
    return {
        "status": "success",
        "message": "User added to tenant successfully",
        "data": {"user": added},
    }


@router.delete("/{tenant_id}/users/{user_id}", status_code=204)
@limiter.limit(API_RATE_LIMIT)
async def remove_tenant_user(
    request: Request,
    tenant_id: str,
    user_id: str,
    user: dict = Depends(get_current_user),
    tenants=Depends(get_tenant_service),
):
    await tenants.remove_user(user, tenant_id, user_id)
    return Response(status_code=204)
