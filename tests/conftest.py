"""
Pytest configuration and shared fixtures.
"""
import fnmatch
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Set, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from core.cache import RedisCache
from core.config import AuthConfig
from core.duckdb_store import DuckDBStore
from core.events import EventBus
from core.exceptions import ShopifyAPIError, ShopifyConnectionError
from core.models import EntityType
from core.otp_store import OTPStore
from core.security import TokenSigner

TEST_SECRET = "test-secret-key-1234567890"
STRONG_PASSWORD = "Sup3r$ecret"


# ═══════════════════════════════════════════════════════════════════════════════
# SHOPIFY PAYLOADS
# ═══════════════════════════════════════════════════════════════════════════════

def make_product(shopify_id: int, **overrides) -> Dict[str, Any]:
    product = {
        "id": shopify_id,
        "title": f"Product {shopify_id}",
        "body_html": "<p>Soft cotton</p>",
        "vendor": "Acme",
        "product_type": "T-Shirt",
        "handle": f"product-{shopify_id}",
        "status": "active",
        "tags": "summer, cotton",
        "variants": [
            {"id": shopify_id * 10, "sku": f"SKU-{shopify_id}", "price": "25.00",
             "compare_at_price": "30.00", "inventory_quantity": 4},
        ],
        "images": [{"src": f"https://cdn.example.com/{shopify_id}.jpg"}],
        "created_at": "2026-01-05T10:00:00Z",
        "updated_at": "2026-01-06T10:00:00Z",
    }
    product.update(overrides)
    return product


def make_customer(shopify_id: int, **overrides) -> Dict[str, Any]:
    customer = {
        "id": shopify_id,
        "email": f"Customer{shopify_id}@Example.com",
        "first_name": "Jane",
        "last_name": f"Doe{shopify_id}",
        "phone": "+15550000000",
        "total_spent": "120.50",
        "orders_count": 2,
        "state": "enabled",
        "verified_email": True,
        "tags": "vip",
        "created_at": "2026-01-01T08:00:00Z",
        "updated_at": "2026-01-02T08:00:00Z",
    }
    customer.update(overrides)
    return customer


def make_order(shopify_id: int, customer: Optional[Dict[str, Any]] = None, **overrides) -> Dict[str, Any]:
    order = {
        "id": shopify_id,
        "order_number": 1000 + shopify_id,
        "email": "guest@example.com",
        "financial_status": "paid",
        "fulfillment_status": None,
        "currency": "USD",
        "total_price": "50.00",
        "subtotal_price": "45.00",
        "total_tax": "5.00",
        "total_discounts": "2.00",
        "total_line_items_price": "47.00",
        "line_items": [
            {"id": shopify_id * 100, "product_id": 1, "variant_id": 10, "title": "Product 1",
             "sku": "SKU-1", "quantity": 2, "price": "25.00"},
        ],
        "created_at": "2026-01-10T14:30:00Z",
        "updated_at": "2026-01-10T15:00:00Z",
    }
    if customer is not None:
        order["customer"] = customer
    order.update(overrides)
    return order


@pytest.fixture
def sample_product() -> Dict[str, Any]:
    """Sample product from the Shopify Admin API."""
    return make_product(1)


@pytest.fixture
def sample_customer() -> Dict[str, Any]:
    """Sample customer from the Shopify Admin API."""
    return make_customer(555)


@pytest.fixture
def sample_order(sample_customer) -> Dict[str, Any]:
    """Sample order with an embedded customer."""
    return make_order(9001, customer=sample_customer)


@pytest.fixture
def sample_shop() -> Dict[str, Any]:
    return {"id": 777, "name": "Acme Apparel", "domain": "acme.myshopify.com", "currency": "USD"}


@pytest.fixture
def payloads() -> SimpleNamespace:
    """Builders for Shopify payloads: ``payloads.product(1)``, ``payloads.order(9, customer=...)``."""
    return SimpleNamespace(product=make_product, customer=make_customer, order=make_order)


# ═══════════════════════════════════════════════════════════════════════════════
# FAKES
# ═══════════════════════════════════════════════════════════════════════════════

class FakeRedis:
    """In-memory stand-in for the handful of redis.asyncio calls the app makes."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                deleted += 1
            self.ttls.pop(key, None)
        return deleted

    async def incr(self, key: str) -> int:
        value = int(self.data.get(key, 0)) + 1
        self.data[key] = str(value)
        return value

    async def ttl(self, key: str) -> int:
        if key not in self.data:
            return -2
        return self.ttls.get(key, -1)

    async def expire(self, key: str, seconds: int) -> bool:
        if key not in self.data:
            return False
        self.ttls[key] = seconds
        return True

    async def scan_iter(self, match: str = None, count: int = None):
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self) -> None:
        pass


class FakeShopifyClient:
    """Serves canned collection pages; used as an async context manager like ShopifyClient."""

    def __init__(self, factory: "FakeClientFactory", domain: str, access_token: str):
        self.factory = factory
        self.domain = domain
        self.access_token = access_token

    async def __aenter__(self) -> "FakeShopifyClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        pass

    async def get_shop(self) -> Dict[str, Any]:
        if self.access_token in self.factory.bad_tokens:
            raise ShopifyAPIError("API returned 401", status_code=401)
        return self.factory.shop

    async def get_page(self, entity, since_id: int = 0, limit: int = 50) -> List[Dict[str, Any]]:
        name = EntityType(entity).value
        self.factory.fetches.append((name, since_id, limit))
        if self.factory.failures.get((name, since_id)):
            self.factory.failures[(name, since_id)] -= 1
            raise ShopifyConnectionError(f"API returned 503 for {name} after id {since_id}")
        # Items without an id stand in for malformed payloads and are always served
        items = [
            item for item in self.factory.collections.get(name, [])
            if item.get("id") is None or int(item["id"]) > since_id
        ]
        return items[:limit]


class FakeClientFactory:
    """Drop-in for ShopifyClientFactory."""

    def __init__(self, shop: Optional[Dict[str, Any]] = None):
        self.shop = shop or {"id": 777, "name": "Acme Apparel"}
        self.collections: Dict[str, List[Dict[str, Any]]] = {}
        # (entity, since_id) -> how many more requests for it fail
        self.failures: Dict[Tuple[str, int], int] = {}
        self.bad_tokens: Set[str] = set()
        self.fetches: List[Tuple[str, int, int]] = []

    def __call__(self, domain: str, access_token: str) -> FakeShopifyClient:
        return FakeShopifyClient(self, domain, access_token)

    def fail(self, entity: str, since_id: int = 0, times: int = 1) -> None:
        self.failures[(entity, since_id)] = times

    def cursors_fetched(self, entity: str) -> List[int]:
        return [since_id for name, since_id, _ in self.fetches if name == entity]


# ═══════════════════════════════════════════════════════════════════════════════
# INFRASTRUCTURE FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def store():
    """Connected in-memory DuckDB store."""
    db = DuckDBStore(":memory:")
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def client_factory(sample_shop) -> FakeClientFactory:
    return FakeClientFactory(shop=sample_shop)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def email_service() -> MagicMock:
    """Email service that records the codes it was asked to send."""
    service = MagicMock()
    service.send_verification_otp = AsyncMock(return_value=True)
    service.send_password_reset_otp = AsyncMock(return_value=True)
    return service


@pytest_asyncio.fixture
async def tenant_store(store):
    """Store with one tenant and one connected shop; returns (db, tenant, shop_row)."""
    tenant = await store.create_tenant("Acme")
    shop = await store.create_store(tenant["id"], "acme.myshopify.com", "Acme", access_token="shpat_123")
    return store, tenant, shop


# ═══════════════════════════════════════════════════════════════════════════════
# API FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def app(store, fake_redis, email_service, client_factory, bus):
    """Application wired to in-memory resources (startup events are not run)."""
    from web.main import create_app, wire_services
    from web.routes.api._deps import limiter

    application = create_app(":memory:")
    wire_services(
        application,
        store=store,
        cache=RedisCache(enabled=False, bus=bus),
        otp_store=OTPStore(fake_redis, max_attempts=5),
        email_service=email_service,
        client_factory=client_factory,
        bus=bus,
        signer=TokenSigner(TEST_SECRET),
    )
    # Fast hashes keep the suite quick
    application.state.auth_service.auth_config = AuthConfig(bcrypt_rounds=4)
    limiter.enabled = False
    yield application
    limiter.enabled = True


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


def last_otp(mock: AsyncMock) -> str:
    """The code passed to the most recent send_*_otp call."""
    return mock.await_args.args[1]


@pytest.fixture
def signup_user(client, email_service):
    """
    Sign up and verify an account; returns the verify response body.

    Cookies are cleared afterwards so each request authenticates only with
    the Bearer header it sends.
    """
    async def _signup(
        email: str = "owner@example.com",
        username: str = "owner",
        password: str = STRONG_PASSWORD,
    ) -> Dict[str, Any]:
        response = await client.post("/api/auth/signup", json={
            "email": email,
            "username": username,
            "password": password,
            "passwordConfirm": password,
        })
        assert response.status_code == 201, response.text

        response = await client.post("/api/auth/verify-email", json={
            "email": email,
            "otp": last_otp(email_service.send_verification_otp),
        })
        assert response.status_code == 200, response.text
        client.cookies.clear()
        return response.json()

    return _signup


def bearer(body: Dict[str, Any]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {body['token']}"}


@pytest_asyncio.fixture
async def auth_headers(signup_user) -> Dict[str, str]:
    """Bearer header of a verified user who owns a fresh tenant."""
    return bearer(await signup_user())


@pytest.fixture
def otp_sent(email_service):
    """Returns the most recent verification or reset code that was emailed."""
    def _code(kind: str = "verify") -> str:
        mock = email_service.send_verification_otp if kind == "verify" else email_service.send_password_reset_otp
        return last_otp(mock)
    return _code
