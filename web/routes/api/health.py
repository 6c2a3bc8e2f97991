"""Health check and metrics endpoints."""
import time

from fastapi import APIRouter, Request

from core.config import config
from core.models import utcnow
from core.observability import Timer, get_correlation_id, metrics
from web.config import VERSION
from web.schemas import HealthResponse, MetricsResponse
from ._deps import START_TIME, get_cache, get_runner, get_store, limiter, logger

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check endpoint for Docker/load balancer monitoring."""
    database = "disconnected"
    try:
        with Timer("health_check_db") as timer:
            if await get_store(request).ping():
                database = "connected"
        logger.debug(f"Health check database latency {timer.elapsed_ms:.2f}ms")
    except Exception as e:
        logger.warning(f"Health check database error: {e}")

    return {
        "status": "ok" if database == "connected" else "degraded",
        "message": "Server is running",
        "timestamp": utcnow().isoformat() + "Z",
        "environment": config.environment,
        "version": VERSION,
        "database": database,
    }


@router.get("/metrics", response_model=MetricsResponse)
@limiter.limit("60/minute")
async def get_metrics_endpoint(request: Request):
    """Request, timing, sync, cache and scheduler metrics."""
    return {
        "uptime_seconds": int(time.time() - START_TIME),
        "correlation_id": get_correlation_id(),
        **metrics.get_stats(),
        "cache": get_cache(request).get_stats(),
        "scheduler": get_runner(request).get_scheduled_jobs(),
    }


@router.get("/health/detailed")
@limiter.limit("30/minute")
async def detailed_health_check(request: Request):
    """Component-level status: database, cache and sync scheduler."""
    components = {}
    overall_status = "ok"

    try:
        with Timer("health_duckdb") as timer:
            db_stats = await get_store(request).get_stats()
        components["database"] = {
            "status": "connected",
            "latency_ms": round(timer.elapsed_ms, 2),
            **get_store(request).describe(),
            **db_stats,
        }
    except Exception as e:
        components["database"] = {"status": "error", "error": str(e)}
        overall_status = "degraded"

    cache = get_cache(request)
    components["redis"] = {
        "status": "connected" if cache.is_connected else "not_connected",
        **cache.get_stats(),
    }

    runner = get_runner(request)
    components["scheduler"] = {
        "status": "running" if runner.is_running else "stopped",
        "jobs": runner.get_scheduled_jobs(),
        "history": runner.get_history(),
    }

    return {
        "status": overall_status,
        "version": VERSION,
        "uptime_seconds": int(time.time() - START_TIME),
        "correlation_id": get_correlation_id(),
        "components": components,
    }
