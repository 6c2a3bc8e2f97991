"""
Sync service for mirroring Shopify stores into DuckDB.

Pulls products, customers and orders page by page and upserts them keyed by
``{store_id}_{shopify_id}``.

Features:
- since_id pagination with page-level error accounting
- Bounded concurrent upserts (one batch of items at a time)
- Per-item error isolation: a bad item is logged, counted and skipped
- Orders resolve their embedded customer before being written
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.config import SyncConfig, config
from core.duckdb_store import DuckDBStore
from core.events import EventBus, emit_entity_synced
from core.models import (
    Customer,
    EntityType,
    Order,
    Product,
    SyncResult,
    SyncStats,
    composite_id,
)
from core.observability import Timer, get_logger
from core.pagination import ShopifyPaginator
from core.shopify import ShopifyClient, ShopifyClientFactory

logger = get_logger(__name__)

# Full syncs run the streams in this order so customers exist before orders
SYNC_ORDER = (EntityType.PRODUCTS, EntityType.CUSTOMERS, EntityType.ORDERS)

ItemHandler = Callable[[Dict[str, Any], Dict[str, Any]], Awaitable[bool]]


class DataSyncService:
    """
    Service for syncing one Shopify store into the local database.

    The service is stateless between runs; jobs, locking and
    ``last_synced_at`` bookkeeping belong to the job runner.
    """

    def __init__(
        self,
        store: DuckDBStore,
        client_factory: ShopifyClientFactory,
        bus: Optional[EventBus] = None,
        sync_config: Optional[SyncConfig] = None,
    ):
        self.store = store
        self.client_factory = client_factory
        self.bus = bus
        self.sync_config = sync_config or config.sync

        self._handlers: Dict[EntityType, ItemHandler] = {
            EntityType.PRODUCTS: self._upsert_product,
            EntityType.CUSTOMERS: self._upsert_customer,
            EntityType.ORDERS: self._upsert_order,
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # ENTRY POINTS
    # ═══════════════════════════════════════════════════════════════════════════

    async def sync_store(self, store_row: Dict[str, Any], data_type: Optional[str] = None) -> SyncResult:
        """
        Sync one store.

        Args:
            store_row: Store record (needs ``id``, ``tenant_id``, ``domain``, ``access_token``)
            data_type: ``products``/``customers``/``orders``, or None for all three

        Returns:
            SyncResult with the summed stats of every stream that ran
        """
        entities: List[EntityType] = [EntityType(data_type)] if data_type else list(SYNC_ORDER)
        label = entities[0].value if data_type else "items"

        total = SyncStats()
        aborted = False

        logger.info(
            f"Starting sync for store {store_row['domain']}",
            extra={"store_id": store_row["id"], "data_type": data_type or "all"},
        )

        async with self.client_factory(store_row["domain"], store_row["access_token"]) as client:
            for entity in entities:
                result = await self.sync_entity(client, store_row, entity)
                total += result.stats
                aborted = aborted or result.aborted

        result = SyncResult(total, label=label, aborted=aborted)
        logger.info(result.message, extra={"store_id": store_row["id"], "stats": total.to_dict()})
        return result

    # ═══════════════════════════════════════════════════════════════════════════
    # PIPELINE
    # ═══════════════════════════════════════════════════════════════════════════

    async def sync_entity(
        self,
        client: ShopifyClient,
        store_row: Dict[str, Any],
        entity: EntityType,
    ) -> SyncResult:
        """
        Pull every page of one entity stream and upsert its items.

        Failed pages and failed items both add to ``errors``; ``total``
        counts the items actually received.
        """
        entity = EntityType(entity)
        handler = self._handlers[entity]
        batch_size = self.sync_config.batch_size
        stats = SyncStats()

        paginator = ShopifyPaginator(
            lambda since_id, limit: client.get_page(entity, since_id, limit),
            page_size=self.sync_config.page_size,
            max_consecutive_errors=self.sync_config.max_consecutive_page_errors,
            max_pages=self.sync_config.max_pages,
            label=entity.value,
        )

        with Timer(f"sync_{entity.value}", logger) as timer:
            async for page in paginator:
                for start in range(0, len(page), batch_size):
                    batch = page[start:start + batch_size]
                    outcomes = await asyncio.gather(
                        *(self._process_item(handler, store_row, item, entity) for item in batch)
                    )
                    for created in outcomes:
                        stats.total += 1
                        if created is None:
                            stats.errors += 1
                        elif created:
                            stats.created += 1
                        else:
                            stats.updated += 1

        stats.errors += paginator.page_errors

        logger.info(
            f"Synced {stats.total} {entity.value} for store {store_row['domain']}",
            extra={
                "store_id": store_row["id"],
                "stats": stats.to_dict(),
                "pages": paginator.pages_fetched,
                "page_errors": paginator.page_errors,
                "aborted": paginator.aborted,
            },
        )
        await emit_entity_synced(
            store_row["id"], entity.value, stats.to_dict(), round(timer.elapsed_ms, 2), bus=self.bus
        )
        return SyncResult(stats, label=entity.value, aborted=paginator.aborted)

    async def _process_item(
        self,
        handler: ItemHandler,
        store_row: Dict[str, Any],
        item: Dict[str, Any],
        entity: EntityType,
    ) -> Optional[bool]:
        """Run one upsert; None means the item failed."""
        try:
            return await handler(store_row, item)
        except Exception as e:
            logger.error(
                f"Failed to sync {entity.value} item {item.get('id') if isinstance(item, dict) else item!r}: {e}",
                extra={"store_id": store_row["id"], "error_type": type(e).__name__},
            )
            return None

    # ─── Item handlers ────────────────────────────────────────────────────────

    async def _upsert_product(self, store_row: Dict[str, Any], item: Dict[str, Any]) -> bool:
        product = Product.from_api(item)
        return await self.store.upsert_product(store_row["id"], store_row["tenant_id"], product)

    async def _upsert_customer(self, store_row: Dict[str, Any], item: Dict[str, Any]) -> bool:
        customer = Customer.from_api(item)
        return await self.store.upsert_customer(store_row["id"], store_row["tenant_id"], customer)

    async def _upsert_order(self, store_row: Dict[str, Any], item: Dict[str, Any]) -> bool:
        order = Order.from_api(item)

        customer_id = None
        if order.customer is not None:
            # Embedded customer may not have been seen by the customers stream yet
            await self.store.upsert_customer(store_row["id"], store_row["tenant_id"], order.customer)
            customer_id = composite_id(store_row["id"], order.customer.shopify_id)

        return await self.store.upsert_order(store_row["id"], store_row["tenant_id"], order, customer_id)
