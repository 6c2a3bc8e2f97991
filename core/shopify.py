"""
Async HTTP client for the Shopify Admin REST API.

One client talks to one shop. Clients are created through
``ShopifyClientFactory`` so that each shop keeps its own circuit breaker and
rate limiter across sync jobs.

Features:
- Connection pooling with httpx
- Exponential backoff retry on connection errors, 429 and 5xx
- Circuit breaker per shop (opens after 5 failures)
- Token bucket matching Shopify's REST leaky bucket (2 req/s, burst 40)
- Request correlation IDs for tracing
"""
from typing import Any, Dict, List, Optional

import httpx

from core.config import config
from core.exceptions import ShopifyAPIError, ShopifyConnectionError, ShopifyDataError, ShopifyError
from core.models import EntityType
from core.observability import Timer, get_correlation_id, get_logger
from core.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    RateLimiter,
    RetryConfig,
    retry_with_backoff,
)

logger = get_logger(__name__)

REQUEST_TIMEOUT = config.shopify.request_timeout
ACCESS_TOKEN_HEADER = "X-Shopify-Access-Token"
HMAC_HEADER = "X-Shopify-Hmac-Sha256"

# Resilience configuration
RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    base_delay=1.0,
    max_delay=30.0,
    exponential_base=2.0
)

CIRCUIT_BREAKER_CONFIG = CircuitBreakerConfig(
    failure_threshold=5,
    recovery_timeout=60.0,
    half_open_requests=1
)


class ShopifyClient:
    """
    Async client for a single Shopify shop.

    Usage:
        async with ShopifyClient("my-shop.myshopify.com", token) as client:
            products = await client.get_page(EntityType.PRODUCTS, since_id=0, limit=50)
    """

    def __init__(
        self,
        domain: str,
        access_token: str,
        api_version: str = None,
        timeout: float = REQUEST_TIMEOUT,
        circuit_breaker: Optional[CircuitBreaker] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        if not domain:
            raise ValueError("Shop domain is required")
        if not access_token:
            raise ValueError("Shopify access token is required")

        self.domain = domain
        self.access_token = access_token
        self.api_version = api_version or config.shopify.api_version
        self.timeout = timeout
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name=domain, config=CIRCUIT_BREAKER_CONFIG)
        self.rate_limiter = rate_limiter
        self.retry_config = retry_config or RETRY_CONFIG
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return f"https://{self.domain}/admin/api/{self.api_version}"

    @property
    def headers(self) -> Dict[str, str]:
        """Request headers with auth."""
        return {
            ACCESS_TOKEN_HEADER: self.access_token,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def connect(self) -> None:
        """Create HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                timeout=self.timeout,
                limits=httpx.Limits(
                    max_keepalive_connections=5,
                    max_connections=10,
                )
            )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ShopifyClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Make HTTP request to Shopify with retry and circuit breaker.

        Raises:
            ShopifyConnectionError: Network/timeout/throttling errors after retries
            ShopifyAPIError: API returned a non-retryable error response
            CircuitOpenError: Circuit breaker is open
        """
        return await self.circuit_breaker.call(
            retry_with_backoff,
            self._do_request,
            method, path, params,
            config=self.retry_config,
            retryable_exceptions=(ShopifyConnectionError,),
            failure_exceptions=(ShopifyConnectionError,),
        )

    async def _do_request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Execute a single HTTP request (called by retry wrapper)."""
        if not self._client:
            await self.connect()

        if self.rate_limiter and not await self.rate_limiter.acquire():
            raise ShopifyConnectionError("Client-side rate limit wait exceeded", retry_after=1)

        url = f"{self.base_url}/{path.lstrip('/')}"

        request_headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            request_headers["X-Request-ID"] = correlation_id

        try:
            with Timer(f"shopify_{path}", logger):
                response = await self._client.request(
                    method=method,
                    url=url,
                    params=params,
                    headers=request_headers or None,
                )
        except httpx.TimeoutException as e:
            logger.error(
                f"Request timeout: {method} {path}",
                extra={"shop": self.domain, "endpoint": path, "timeout": self.timeout}
            )
            raise ShopifyConnectionError(
                f"Request timeout after {self.timeout}s",
                retry_after=5
            ) from e
        except httpx.RequestError as e:
            logger.error(
                f"Request failed: {method} {path} - {e}",
                extra={"shop": self.domain, "endpoint": path, "error": str(e)}
            )
            raise ShopifyConnectionError(str(e)) from e

        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(
                "Shopify throttled request",
                extra={"shop": self.domain, "endpoint": path, "retry_after": retry_after}
            )
            raise ShopifyConnectionError("API returned 429", details="Throttled", retry_after=retry_after)

        if response.status_code >= 500:
            raise ShopifyConnectionError(
                f"API returned {response.status_code}",
                details=response.text[:500],
            )

        if response.status_code >= 400:
            error_text = response.text[:500]
            logger.error(
                f"API error {response.status_code}: {error_text}",
                extra={"shop": self.domain, "endpoint": path, "status_code": response.status_code}
            )
            raise ShopifyAPIError(
                f"API returned {response.status_code}",
                status_code=response.status_code,
                details=error_text
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ShopifyDataError("Response is not valid JSON", details=response.text[:200]) from e

    # ═══════════════════════════════════════════════════════════════════════════
    # SHOP
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_shop(self) -> Dict[str, Any]:
        """Get shop details (``/shop.json``)."""
        data = await self._request("GET", "shop.json")
        shop = data.get("shop")
        if not isinstance(shop, dict):
            raise ShopifyDataError("Missing shop in response", expected="object", got=type(shop).__name__)
        return shop

    async def verify_connection(self) -> bool:
        """Return True if the domain/token pair can read the shop."""
        try:
            await self.get_shop()
            return True
        except (ShopifyError, CircuitOpenError) as e:
            logger.warning(
                f"Shopify connection check failed for {self.domain}: {e}",
                extra={"shop": self.domain}
            )
            return False

    # ═══════════════════════════════════════════════════════════════════════════
    # COLLECTIONS
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_page(
        self,
        entity: EntityType,
        since_id: int = 0,
        limit: int = 50,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch up to ``limit`` items with ids above ``since_id``, in id order.

        Returns:
            The list under the collection key (``products``/``customers``/``orders``)
        """
        entity = EntityType(entity)
        query = {"limit": limit, "since_id": since_id, **(params or {})}
        if entity == EntityType.ORDERS:
            query.setdefault("status", "any")

        data = await self._request("GET", f"{entity.value}.json", params=query)
        items = data.get(entity.value)
        if not isinstance(items, list):
            raise ShopifyDataError(
                f"Missing {entity.value} in response",
                expected="list",
                got=type(items).__name__,
            )
        return items


def _parse_retry_after(value: Optional[str]) -> float:
    try:
        return max(float(value), 0.5) if value else 2.0
    except ValueError:
        return 2.0


# ═══════════════════════════════════════════════════════════════════════════════
# FACTORY
# ═══════════════════════════════════════════════════════════════════════════════

class ShopifyClientFactory:
    """
    Builds ``ShopifyClient`` instances.

    Keeps one circuit breaker and one rate limiter per shop domain so that
    back-to-back jobs for the same shop share the same budget.
    """

    def __init__(
        self,
        api_version: str = None,
        rate: float = None,
        burst: int = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.api_version = api_version or config.shopify.api_version
        self.rate = rate or config.shopify.rate_limit_per_second
        self.burst = burst or config.shopify.rate_limit_burst
        self.retry_config = retry_config
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._limiters: Dict[str, RateLimiter] = {}

    def __call__(self, domain: str, access_token: str) -> ShopifyClient:
        breaker = self._breakers.setdefault(
            domain, CircuitBreaker(name=domain, config=CIRCUIT_BREAKER_CONFIG)
        )
        limiter = self._limiters.setdefault(domain, RateLimiter(rate=self.rate, burst=self.burst))
        return ShopifyClient(
            domain,
            access_token,
            api_version=self.api_version,
            circuit_breaker=breaker,
            rate_limiter=limiter,
            retry_config=self.retry_config,
        )
