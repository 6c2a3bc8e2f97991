"""
API routes split by domain.

Each sub-module defines its own APIRouter which is composed
into the top-level router exposed by this package.
"""
from fastapi import APIRouter

from .health import router as health_router
from .otp import router as otp_router
from .tenants import router as tenants_router
from .stores import router as stores_router
from .sync import router as sync_router
from .dashboard import router as dashboard_router

router = APIRouter()

router.include_router(health_router)
router.include_router(otp_router)
router.include_router(tenants_router)
router.include_router(stores_router)
router.include_router(sync_router)
router.include_router(dashboard_router)
