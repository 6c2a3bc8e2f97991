"""DuckDBStore order methods."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from core.duckdb_constants import fetch_dict, fetch_dicts, from_json, to_json, upsert_row
from core.models import Order, composite_id, utcnow

# Never overwritten once the row exists
ORDER_IMMUTABLE = frozenset({"id", "store_id", "tenant_id", "shopify_id", "created_at", "order_number"})

_JSON_COLUMNS = (
    "line_items", "shipping_address", "billing_address", "shipping_lines",
    "discount_codes", "refunds", "transactions", "tags",
)
_MONEY_COLUMNS = ("total_price", "subtotal_price", "total_tax", "total_discounts", "total_line_items_price")


def order_row(store_id: str, tenant_id: str, order: Order, customer_id: Optional[str]) -> Dict[str, Any]:
    return {
        "id": composite_id(store_id, order.shopify_id),
        "store_id": store_id,
        "tenant_id": tenant_id,
        "shopify_id": order.shopify_id,
        "order_number": order.order_number,
        "customer_id": customer_id,
        "customer_email": order.customer_email,
        "financial_status": order.financial_status,
        "fulfillment_status": order.fulfillment_status,
        "currency": order.currency,
        "total_price": order.total_price,
        "subtotal_price": order.subtotal_price,
        "total_tax": order.total_tax,
        "total_discounts": order.total_discounts,
        "total_line_items_price": order.total_line_items_price,
        "line_items": to_json([li.to_dict() for li in order.line_items]),
        "shipping_address": to_json(order.shipping_address),
        "billing_address": to_json(order.billing_address),
        "shipping_lines": to_json(order.shipping_lines),
        "discount_codes": to_json(order.discount_codes),
        "refunds": to_json(order.refunds),
        "transactions": to_json(order.transactions),
        "note": order.note,
        "tags": to_json(order.tags),
        "customer_locale": order.customer_locale,
        "order_status_url": order.order_status_url,
        "processed_at": order.processed_at,
        "cancelled_at": order.cancelled_at,
        "closed_at": order.closed_at,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
        "synced_at": utcnow(),
    }


class OrdersMixin:

    async def upsert_order(
        self,
        store_id: str,
        tenant_id: str,
        order: Order,
        customer_id: Optional[str] = None,
    ) -> bool:
        """
        Create or refresh one order and replace its normalized line items.

        ``customer_id`` must already exist in ``customers`` (or be None for a
        guest order).

        Returns:
            True if created, False if an existing row was updated
        """
        row = order_row(store_id, tenant_id, order, customer_id)
        async with self.transaction() as conn:
            created = upsert_row(conn, "orders", row, ORDER_IMMUTABLE)

            # Line items carry the order's original creation time for date filters
            created_at = conn.execute("SELECT created_at FROM orders WHERE id = ?", [row["id"]]).fetchone()[0]
            conn.execute("DELETE FROM order_line_items WHERE order_id = ?", [row["id"]])
            if order.line_items:
                conn.executemany("""
                    INSERT INTO order_line_items
                        (order_id, store_id, shopify_id, product_id, variant_id, title, sku, quantity, price, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, [
                    (row["id"], store_id, li.shopify_id, li.product_id, li.variant_id,
                     li.title, li.sku, li.quantity, li.price, created_at)
                    for li in order.line_items
                ])
        return created

    async def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        async with self.connection() as conn:
            row = fetch_dict(conn.execute("SELECT * FROM orders WHERE id = ?", [order_id]))
        if row:
            for column in _JSON_COLUMNS:
                row[column] = from_json(row[column])
            for column in _MONEY_COLUMNS:
                row[column] = float(row[column])
        return row

    async def count_line_items(self, order_id: str) -> int:
        async with self.connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM order_line_items WHERE order_id = ?", [order_id]
            ).fetchone()[0]

    async def get_recent_orders(self, store_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Newest orders of a store with the linked customer's name and email."""
        async with self.connection() as conn:
            rows = fetch_dicts(conn.execute("""
                SELECT
                    o.id, o.order_number, o.created_at, o.financial_status, o.fulfillment_status,
                    o.total_price, o.customer_email,
                    c.id AS customer_id, c.first_name, c.last_name, c.email
                FROM orders o
                LEFT JOIN customers c ON c.id = o.customer_id
                WHERE o.store_id = ?
                ORDER BY o.created_at DESC
                LIMIT ?
            """, [store_id, limit]))
        for row in rows:
            row["total_price"] = float(row["total_price"])
        return rows
