"""DuckDBStore customer methods."""
from __future__ import annotations

from typing import Any, Dict, Optional

from core.duckdb_constants import fetch_dict, from_json, to_json, upsert_row
from core.models import Customer, composite_id, utcnow

# Never overwritten once the row exists
CUSTOMER_IMMUTABLE = frozenset({"id", "store_id", "tenant_id", "shopify_id", "created_at"})


def customer_row(store_id: str, tenant_id: str, customer: Customer) -> Dict[str, Any]:
    return {
        "id": composite_id(store_id, customer.shopify_id),
        "store_id": store_id,
        "tenant_id": tenant_id,
        "shopify_id": customer.shopify_id,
        "email": customer.email,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "phone": customer.phone,
        "accepts_marketing": customer.accepts_marketing,
        "total_spend": customer.total_spend,
        "orders_count": customer.orders_count,
        "state": customer.state,
        "verified_email": customer.verified_email,
        "currency": customer.currency,
        "tags": to_json(customer.tags),
        "addresses": to_json(customer.addresses),
        "default_address": to_json(customer.default_address),
        "last_order_id": customer.last_order_id,
        "last_order_date": customer.last_order_date,
        "created_at": customer.created_at,
        "updated_at": customer.updated_at,
        "synced_at": utcnow(),
    }


class CustomersMixin:

    async def upsert_customer(self, store_id: str, tenant_id: str, customer: Customer) -> bool:
        """
        Create or refresh one customer.

        Email, names, phone, total spend and order count always take the
        latest synced values.

        Returns:
            True if created, False if an existing row was updated
        """
        row = customer_row(store_id, tenant_id, customer)
        async with self.connection() as conn:
            return upsert_row(conn, "customers", row, CUSTOMER_IMMUTABLE)

    async def get_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        async with self.connection() as conn:
            row = fetch_dict(conn.execute("SELECT * FROM customers WHERE id = ?", [customer_id]))
        if row:
            row["tags"] = from_json(row["tags"], [])
            row["addresses"] = from_json(row["addresses"], [])
            row["default_address"] = from_json(row["default_address"])
            row["total_spend"] = float(row["total_spend"])
        return row
