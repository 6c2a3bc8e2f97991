"""
Store connection management.

Connecting a store verifies the domain/token pair against ``/shop.json``
before the store is usable; a failed check leaves the store disconnected
(no token, inactive) so the sync runner never picks it up.
"""
from typing import Any, Dict, Optional

from core.config import AppConfig, config
from core.duckdb_store import DuckDBStore
from core.events import EventBus, SyncEvent
from core.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError, ShopifyError
from core.observability import get_logger
from core.resilience import CircuitOpenError
from core.shopify import ShopifyClientFactory
from core.validators import validate_access_token, validate_pagination, validate_shop_domain
from web.services.dashboard_service import format_customer, format_recent_order

logger = get_logger(__name__)

CONNECT_FAILED_MESSAGE = "Failed to connect to Shopify store. Please check your domain and access token."


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def public_store(store: Dict[str, Any]) -> Dict[str, Any]:
    """Store fields safe to return to the client (never the access token)."""
    return {
        "id": store["id"],
        "tenantId": store["tenant_id"],
        "name": store["name"],
        "domain": store["domain"],
        "shopifyId": store.get("shopify_id"),
        "scope": store.get("scope"),
        "isActive": bool(store.get("is_active")),
        "isConnected": bool(store.get("access_token")),
        "lastSyncedAt": _iso(store.get("last_synced_at")),
        "createdAt": _iso(store.get("created_at")),
        "updatedAt": _iso(store.get("updated_at")),
    }


async def get_accessible_store(store: DuckDBStore, user: Dict[str, Any], store_id: str) -> Dict[str, Any]:
    """
    Load a store the caller's tenant owns.

    Raises:
        NotFoundError: Store does not exist
        ForbiddenError: Store belongs to another tenant
    """
    row = await store.get_store(store_id)
    if row is None:
        raise NotFoundError("Store not found")
    if row["tenant_id"] != user.get("tenant_id"):
        raise ForbiddenError("You do not have permission to view this store")
    return row


class StoreService:

    def __init__(
        self,
        store: DuckDBStore,
        client_factory: ShopifyClientFactory,
        bus: EventBus,
        app_config: AppConfig = None,
    ):
        self.store = store
        self.client_factory = client_factory
        self.bus = bus
        self.config = app_config or config

    async def get_accessible(self, user: Dict[str, Any], store_id: str) -> Dict[str, Any]:
        return await get_accessible_store(self.store, user, store_id)

    async def _fetch_shop(self, domain: str, access_token: str) -> Optional[Dict[str, Any]]:
        """Shop details, or None when the credentials do not work."""
        try:
            async with self.client_factory(domain, access_token) as client:
                return await client.get_shop()
        except (ShopifyError, CircuitOpenError) as e:
            logger.warning(f"Shopify verification failed for {domain}: {e}", extra={"shop": domain})
            return None

    async def _disconnect(self, row: Dict[str, Any], reason: str) -> None:
        await self.store.disconnect_store(row["id"])
        await self.bus.emit(
            SyncEvent.STORE_DISCONNECTED,
            {"store_id": row["id"], "tenant_id": row["tenant_id"], "domain": row["domain"], "reason": reason},
            source="store_service",
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # CONNECT
    # ═══════════════════════════════════════════════════════════════════════════

    async def connect_store(
        self,
        user: Dict[str, Any],
        domain: Optional[str],
        access_token: Optional[str],
        name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create (or reconnect) a store for the caller's tenant.

        Raises:
            ValidationError: Bad domain or missing token
            ConflictError: Domain already connected to another tenant
            BadRequestError: Shopify rejected the credentials
        """
        domain = validate_shop_domain(domain)
        access_token = validate_access_token(access_token)
        tenant_id = user["tenant_id"]

        row = await self.store.get_store_by_domain(domain)
        if row is not None and row["tenant_id"] != tenant_id:
            raise ConflictError("This store is already connected to another account")

        if row is None:
            row = await self.store.create_store(
                tenant_id, domain, name or domain, access_token=access_token, is_active=True
            )
        else:
            fields = {"access_token": access_token, "is_active": True}
            if name:
                fields["name"] = name
            row = await self.store.update_store(row["id"], **fields)

        shop = await self._fetch_shop(domain, access_token)
        if shop is None:
            await self._disconnect(row, "verification_failed")
            raise BadRequestError(CONNECT_FAILED_MESSAGE)

        fields = {"shopify_id": str(shop["id"])} if shop.get("id") is not None else {}
        if not name and shop.get("name"):
            fields["name"] = shop["name"]
        if fields:
            row = await self.store.update_store(row["id"], **fields)

        await self.bus.emit(
            SyncEvent.STORE_CONNECTED,
            {"store_id": row["id"], "tenant_id": tenant_id, "domain": domain},
            source="store_service",
        )
        logger.info(f"Store connected: {domain}", extra={"store_id": row["id"], "tenant_id": tenant_id})
        return public_store(row)

    async def ensure_dev_store(self, tenant_id: str) -> Optional[Dict[str, Any]]:
        """
        Provision the configured development store for a tenant with no stores.

        Only in development, only when ``DEV_SHOPIFY_DOMAIN`` and
        ``DEV_SHOPIFY_ACCESS_TOKEN`` are set. The credentials are not verified.
        """
        if not self.config.dev_store_enabled:
            return None
        if await self.store.count_tenant_stores(tenant_id):
            return None

        domain = validate_shop_domain(self.config.dev.shopify_domain)
        if await self.store.get_store_by_domain(domain) is not None:
            # Already provisioned for some other tenant
            return None

        row = await self.store.create_store(
            tenant_id,
            domain,
            self.config.dev.store_name,
            access_token=self.config.dev.shopify_access_token,
            is_active=True,
        )
        logger.info(f"Provisioned development store {domain}", extra={"tenant_id": tenant_id})
        return row

    # ═══════════════════════════════════════════════════════════════════════════
    # READ
    # ═══════════════════════════════════════════════════════════════════════════

    async def list_stores(
        self,
        user: Dict[str, Any],
        page=None,
        limit=None,
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        page, limit = validate_pagination(page, limit)
        await self.ensure_dev_store(user["tenant_id"])

        rows, total = await self.store.list_stores(user["tenant_id"], page, limit, search or None)
        return {
            "stores": [public_store(r) for r in rows],
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def get_store_detail(self, user: Dict[str, Any], store_id: str) -> Dict[str, Any]:
        """Store with entity counts, revenue totals and its 5 newest orders."""
        row = await self.get_accessible(user, store_id)
        counts = await self.store.count_store_entities(store_id)
        totals = await self.store.get_order_totals(store_id)
        recent = await self.store.get_recent_orders(store_id, 5)
        return {
            **public_store(row),
            "stats": {
                "productsCount": counts["products"],
                "customersCount": counts["customers"],
                "ordersCount": counts["orders"],
                "totalPrice": totals["total_price"],
                "subtotalPrice": totals["subtotal_price"],
                "totalTax": totals["total_tax"],
                "totalDiscounts": totals["total_discounts"],
            },
            "recentOrders": [format_recent_order(r) for r in recent],
        }

    async def get_store_stats(self, user: Dict[str, Any], store_id: str) -> Dict[str, Any]:
        await self.get_accessible(user, store_id)
        counts = await self.store.count_store_entities(store_id)
        totals = await self.store.get_order_totals(store_id)
        recent = await self.store.get_recent_orders(store_id, 5)
        top = await self.store.get_top_customers_by_spend(store_id, 5)
        return {
            "stats": {
                "productsCount": counts["products"],
                "customersCount": counts["customers"],
                "ordersCount": counts["orders"],
                "totalAmount": totals["total_price"],
            },
            "recentOrders": [format_recent_order(r) for r in recent],
            "topCustomers": [format_customer(r) for r in top],
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # UPDATE / DELETE
    # ═══════════════════════════════════════════════════════════════════════════

    async def update_store(
        self,
        user: Dict[str, Any],
        store_id: str,
        name: Optional[str] = None,
        is_active: Optional[bool] = None,
        access_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Rename, (de)activate or rotate the token. A new token is verified first."""
        row = await self.get_accessible(user, store_id)

        fields: Dict[str, Any] = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise BadRequestError("Store name cannot be empty")
            fields["name"] = name
        if is_active is not None:
            fields["is_active"] = bool(is_active)
        if access_token is not None:
            access_token = validate_access_token(access_token)
            if await self._fetch_shop(row["domain"], access_token) is None:
                raise BadRequestError(CONNECT_FAILED_MESSAGE)
            fields["access_token"] = access_token

        if not fields:
            raise BadRequestError("No valid fields to update")

        row = await self.store.update_store(store_id, **fields)
        return public_store(row)

    async def delete_store(self, user: Dict[str, Any], store_id: str) -> None:
        row = await self.get_accessible(user, store_id)
        # A running sync would keep writing rows for the deleted store
        if await self.store.get_active_sync_job(store_id):
            raise ConflictError("Cannot delete a store while a sync is in progress")
        # Emitted first: the cascade also removes the store's audit rows
        await self.bus.emit(
            SyncEvent.STORE_DISCONNECTED,
            {"store_id": store_id, "tenant_id": row["tenant_id"], "domain": row["domain"], "reason": "deleted"},
            source="store_service",
        )
        await self.store.delete_store(store_id)
