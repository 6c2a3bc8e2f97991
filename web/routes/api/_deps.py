"""Shared dependencies for API route modules."""
import time
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.cache import RedisCache
from core.duckdb_store import DuckDBStore
from core.exceptions import ForbiddenError, UnauthorizedError
from core.observability import get_logger
from core.scheduler import SyncJobRunner
from web.config import COOKIE_NAME

# Shared limiter instance
limiter = Limiter(key_func=get_remote_address)

logger = get_logger(__name__)

# Track startup time for uptime calculation
START_TIME = time.time()


# ─── app.state accessors ─────────────────────────────────────────────────────

def get_store(request: Request) -> DuckDBStore:
    return request.app.state.store


def get_cache(request: Request) -> RedisCache:
    return request.app.state.cache


def get_runner(request: Request) -> SyncJobRunner:
    return request.app.state.runner


def get_auth_service(request: Request):
    return request.app.state.auth_service


def get_tenant_service(request: Request):
    return request.app.state.tenant_service


def get_store_service(request: Request):
    return request.app.state.store_service


def get_dashboard_service(request: Request):
    return request.app.state.dashboard_service


def get_job_service(request: Request):
    return request.app.state.job_service


# ─── Authentication ──────────────────────────────────────────────────────────

def read_token(request: Request) -> Optional[str]:
    """Bearer header first, then the auth cookie."""
    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):].strip()
        if token:
            return token
    return request.cookies.get(COOKIE_NAME)


async def get_current_user(request: Request) -> Dict[str, Any]:
    """
    Resolve the signed-in user.

    Raises:
        UnauthorizedError: No token, an invalid or expired token, or a token
            for a user that no longer exists
    """
    token = read_token(request)
    if not token:
        raise UnauthorizedError("You are not logged in! Please log in to get access.")

    user = await request.app.state.auth_service.authenticate(token)
    request.state.user = user
    return user


async def require_tenant(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Signed-in user that belongs to a tenant."""
    if not user.get("tenant_id"):
        raise ForbiddenError("You must belong to a tenant to access this resource")
    return user
