"""
Per-request context for the HTTP API.

``RequestContextMiddleware`` tags every request with a request id (taken
from ``X-Request-ID`` when the caller sends one), enforces the request time
budget and records access logs and endpoint metrics.
"""
import asyncio
import time
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from core.config import config
from core.observability import (
    generate_correlation_id,
    get_logger,
    metrics,
    set_correlation_id,
)

logger = get_logger(__name__)

# Polled by load balancers; kept out of the access log and the time budget
UNTRACKED_PATHS = frozenset({"/api/health"})


def _endpoint_name(request: Request) -> str:
    # Route template keeps ids out of the metric names
    route = request.scope.get("route")
    return f"{request.method} {getattr(route, 'path', request.url.path)}"


class RequestContextMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, timeout: Optional[float] = None):
        super().__init__(app)
        self.timeout = timeout if timeout is not None else config.web.request_timeout

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_correlation_id()
        set_correlation_id(request_id)
        path = request.url.path

        if path in UNTRACKED_PATHS:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(call_next(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            metrics.record_error("REQUEST_TIMEOUT")
            logger.warning(
                f"{request.method} {path} exceeded {self.timeout}s",
                extra={"method": request.method, "path": path},
            )
            response = JSONResponse(
                status_code=504,
                content={"status": "error", "message": "Request timed out"},
            )
        except Exception as e:
            metrics.record_error(type(e).__name__)
            logger.error(
                f"{request.method} {path} raised {type(e).__name__}",
                extra={"method": request.method, "path": path, "error": str(e)},
            )
            raise

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"

        endpoint = _endpoint_name(request)
        metrics.record_request(endpoint)
        metrics.record_timing(endpoint, elapsed_ms)

        status = response.status_code
        if status >= 400:
            metrics.record_error(f"HTTP_{status}")
        log = logger.warning if status >= 500 else logger.info
        log(
            f"{request.method} {path} -> {status} ({elapsed_ms}ms)",
            extra={
                "method": request.method,
                "path": path,
                "status_code": status,
                "duration_ms": elapsed_ms,
                "client_ip": request.client.host if request.client else None,
            },
        )
        return response
