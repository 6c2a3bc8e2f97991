"""DuckDBStore product methods."""
from __future__ import annotations

from typing import Any, Dict, Optional

from core.duckdb_constants import fetch_dict, from_json, to_json, upsert_row
from core.models import Product, composite_id, utcnow

# Never overwritten once the row exists
PRODUCT_IMMUTABLE = frozenset({"id", "store_id", "tenant_id", "shopify_id", "created_at"})

_JSON_COLUMNS = ("tags", "images", "variants", "options")


def product_row(store_id: str, tenant_id: str, product: Product) -> Dict[str, Any]:
    return {
        "id": composite_id(store_id, product.shopify_id),
        "store_id": store_id,
        "tenant_id": tenant_id,
        "shopify_id": product.shopify_id,
        "title": product.title,
        "description": product.description,
        "vendor": product.vendor,
        "product_type": product.product_type,
        "handle": product.handle,
        "status": product.status,
        "sku": product.sku,
        "price": product.price,
        "compare_at_price": product.compare_at_price,
        "inventory_quantity": product.inventory_quantity,
        "image_url": product.image_url,
        "tags": to_json(product.tags),
        "images": to_json(product.images),
        "variants": to_json(product.variants),
        "options": to_json(product.options),
        "published_at": product.published_at,
        "created_at": product.created_at,
        "updated_at": product.updated_at,
        "synced_at": utcnow(),
    }


class ProductsMixin:

    async def upsert_product(self, store_id: str, tenant_id: str, product: Product) -> bool:
        """
        Create or refresh one product.

        Returns:
            True if created, False if an existing row was updated
        """
        row = product_row(store_id, tenant_id, product)
        async with self.connection() as conn:
            return upsert_row(conn, "products", row, PRODUCT_IMMUTABLE)

    async def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        async with self.connection() as conn:
            row = fetch_dict(conn.execute("SELECT * FROM products WHERE id = ?", [product_id]))
        if row:
            for column in _JSON_COLUMNS:
                row[column] = from_json(row[column], [])
            row["price"] = float(row["price"])
        return row
