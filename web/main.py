"""
FastAPI web application for Shopify Insights.

``create_app()`` builds the application; the database, cache, OTP store,
email service, Shopify client factory and sync job runner are created on
startup and kept on ``app.state``.
"""
import os
from typing import Optional

import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.gzip import GZipMiddleware

from core.cache import RedisCache, register_cache_invalidation_handlers
from core.config import ConfigurationError, config, validate_config
from core.duckdb_store import DuckDBStore
from core.email_service import EmailService
from core.events import EventBus, register_audit_handlers
from core.exceptions import AppError, QueryTimeoutError, ValidationError
from core.observability import get_logger, metrics, setup_logging
from core.otp_store import OTPStore
from core.scheduler import SyncJobRunner
from core.security import TokenSigner
from core.shopify import ShopifyClientFactory
from core.sync_service import DataSyncService
from web.config import CORS_ORIGINS, VERSION
from web.middleware import RequestContextMiddleware
from web.routes import api, auth
from web.routes.api._deps import limiter
from web.services.auth_service import AuthService
from web.services.dashboard_service import DashboardService
from web.services.job_service import JobService
from web.services.store_service import StoreService
from web.services.tenant_service import TenantService

logger = get_logger(__name__)

GENERIC_ERROR_MESSAGE = "Something went very wrong!"


def _error(status_code: int, message: str, **extra) -> ORJSONResponse:
    status = "fail" if 400 <= status_code < 500 else "error"
    return ORJSONResponse(status_code=status_code, content={"status": status, "message": message, **extra})


# ═══════════════════════════════════════════════════════════════════════════════
# SERVICE WIRING
# ═══════════════════════════════════════════════════════════════════════════════

def wire_services(
    app: FastAPI,
    store: DuckDBStore,
    cache: RedisCache,
    otp_store: OTPStore,
    email_service: EmailService,
    client_factory: ShopifyClientFactory,
    bus: EventBus,
    signer: TokenSigner,
) -> SyncJobRunner:
    """
    Build the services on ``app.state`` from already-created resources.

    Returns:
        The (not yet started) sync job runner
    """
    sync_service = DataSyncService(store, client_factory, bus=bus)
    runner = SyncJobRunner(store, sync_service, bus=bus)

    app.state.bus = bus
    app.state.store = store
    app.state.cache = cache
    app.state.otp_store = otp_store
    app.state.email_service = email_service
    app.state.client_factory = client_factory
    app.state.sync_service = sync_service
    app.state.runner = runner

    app.state.auth_service = AuthService(store, otp_store, email_service, signer)
    app.state.tenant_service = TenantService(store)
    app.state.store_service = StoreService(store, client_factory, bus)
    app.state.dashboard_service = DashboardService(store, cache)
    app.state.job_service = JobService(store, runner)

    register_audit_handlers(store, bus)
    register_cache_invalidation_handlers(cache, bus)
    return runner


# ═══════════════════════════════════════════════════════════════════════════════
# EXCEPTION HANDLERS
# ═══════════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if not exc.is_operational:
            logger.error(f"Non-operational error: {exc.message}", exc_info=exc)
            if config.is_production:
                return _error(500, GENERIC_ERROR_MESSAGE)
        return ORJSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error(400, exc.message, field=exc.field)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return _error(400, "Invalid input data", errors=errors)

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning(f"Rate limit exceeded for {get_remote_address(request)}")
        return _error(429, "Too many requests from this IP, please try again later.", retry_after=exc.detail)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and request.url.path.startswith("/api"):
            return _error(404, "API endpoint not found")
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(QueryTimeoutError)
    async def query_timeout_handler(request: Request, exc: QueryTimeoutError):
        logger.error(f"Query timeout: {exc}")
        metrics.record_error("QUERY_TIMEOUT")
        return _error(504, "The query took too long. Try a shorter date range.")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error: {exc}", exc_info=exc)
        message = GENERIC_ERROR_MESSAGE if config.is_production else (str(exc) or type(exc).__name__)
        return _error(500, message)


# ═══════════════════════════════════════════════════════════════════════════════
# APPLICATION
# ═══════════════════════════════════════════════════════════════════════════════

def create_app(db_path: Optional[str] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        db_path: DuckDB file (or ``:memory:``); defaults to ``DUCKDB_PATH``
    """
    app = FastAPI(
        title="Shopify Insights",
        description="Multi-tenant Shopify store analytics",
        version=VERSION,
        default_response_class=ORJSONResponse,
    )
    app.state.limiter = limiter

    register_exception_handlers(app)

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router, prefix="/api")
    app.include_router(api.router, prefix="/api")

    @app.on_event("startup")
    async def startup_event():
        logger.info("Shopify Insights starting...")

        try:
            validate_config()
            logger.info("Configuration validated")
        except ConfigurationError as e:
            logger.critical(f"Configuration error: {e}")
            raise SystemExit(1)

        bus = EventBus()

        store = DuckDBStore(db_path or config.database.path)
        await store.connect()
        stats = await store.get_stats()
        logger.info(
            f"DuckDB ready: {stats['stores']} stores, {stats['orders']} orders, {stats['db_size_mb']} MB"
        )

        # Non-fatal: analytics fall through to DuckDB without Redis
        cache = RedisCache(bus=bus)
        if not await cache.connect():
            logger.info("Redis cache not available, running without cache")

        # OTPs need Redis regardless of CACHE_ENABLED; errors surface per request as 503
        otp_client = redis.from_url(config.redis.url, encoding="utf-8", decode_responses=True)
        app.state.otp_client = otp_client

        runner = wire_services(
            app,
            store=store,
            cache=cache,
            otp_store=OTPStore(otp_client),
            email_service=EmailService(),
            client_factory=ShopifyClientFactory(),
            bus=bus,
            signer=TokenSigner(),
        )

        try:
            await runner.start()
            logger.info("Sync job runner started")
        except Exception as e:
            logger.error(f"Scheduler initialization failed: {e}", exc_info=True)

        logger.info("Shopify Insights ready")

    @app.on_event("shutdown")
    async def shutdown_event():
        try:
            app.state.runner.shutdown()
        except Exception as e:
            logger.warning(f"Error stopping scheduler: {e}")

        try:
            await app.state.cache.disconnect()
            await app.state.otp_client.aclose()
        except Exception as e:
            logger.warning(f"Error disconnecting Redis: {e}")

        try:
            await app.state.store.close()
            logger.info("DuckDB closed")
        except Exception as e:
            logger.warning(f"Error closing DuckDB: {e}")
        logger.info("Shopify Insights stopped")

    return app


# Use JSON format in production (LOG_FORMAT=json), human-readable otherwise
setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_format=os.getenv("LOG_FORMAT", "text") == "json",
)

app = create_app()


if __name__ == "__main__":
    import uvicorn

    from web.config import WEB_HOST, WEB_PORT

    uvicorn.run("web.main:app", host=WEB_HOST, port=WEB_PORT)
