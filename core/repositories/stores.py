"""DuckDBStore store (Shopify shop connection) methods."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from core.duckdb_constants import fetch_dict, fetch_dicts, new_id
from core.models import utcnow
from core.observability import get_logger

logger = get_logger(__name__)

STORE_COLUMNS = (
    "id, tenant_id, name, domain, shopify_id, access_token, scope, "
    "is_active, last_synced_at, created_at, updated_at"
)

# Columns a caller may change through update_store
UPDATABLE_STORE_FIELDS = frozenset({"name", "access_token", "is_active", "shopify_id", "scope"})

# Children of a store, deleted before the store row itself
_STORE_CHILD_TABLES = ("order_line_items", "orders", "customers", "products", "events", "sync_jobs")


class StoresMixin:

    @staticmethod
    def _delete_store_data(conn, where: str, params: list) -> None:
        """Delete every row owned by the matching stores (inside a transaction)."""
        for table in _STORE_CHILD_TABLES:
            conn.execute(f"DELETE FROM {table} WHERE {where}", params)

    async def create_store(
        self,
        tenant_id: str,
        domain: str,
        name: str,
        access_token: Optional[str] = None,
        shopify_id: Optional[str] = None,
        scope: Optional[str] = None,
        is_active: bool = True,
    ) -> Dict[str, Any]:
        now = utcnow()
        store_id = new_id()
        async with self.connection() as conn:
            conn.execute(f"""
                INSERT INTO stores ({STORE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL, ?, ?)
            """, [store_id, tenant_id, name, domain, shopify_id, access_token, scope, is_active, now, now])
            store = fetch_dict(conn.execute(
                f"SELECT {STORE_COLUMNS} FROM stores WHERE id = ?", [store_id]
            ))
        logger.info(f"Store created: {domain}", extra={"store_id": store_id, "tenant_id": tenant_id})
        return store

    async def get_store(self, store_id: str) -> Optional[Dict[str, Any]]:
        async with self.connection() as conn:
            return fetch_dict(conn.execute(
                f"SELECT {STORE_COLUMNS} FROM stores WHERE id = ?", [store_id]
            ))

    async def get_store_by_domain(self, domain: str) -> Optional[Dict[str, Any]]:
        async with self.connection() as conn:
            return fetch_dict(conn.execute(
                f"SELECT {STORE_COLUMNS} FROM stores WHERE domain = ?", [domain]
            ))

    async def list_stores(
        self,
        tenant_id: str,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        One page of a tenant's stores, newest first.

        Returns:
            (stores, total matching)
        """
        conditions = ["tenant_id = ?"]
        params: list = [tenant_id]
        if search:
            conditions.append("(name ILIKE ? OR domain ILIKE ?)")
            pattern = f"%{search}%"
            params.extend([pattern, pattern])
        where = " AND ".join(conditions)

        async with self.connection() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM stores WHERE {where}", params).fetchone()[0]
            rows = fetch_dicts(conn.execute(f"""
                SELECT {STORE_COLUMNS} FROM stores
                WHERE {where}
                ORDER BY created_at DESC
                LIMIT ? OFFSET ?
            """, params + [limit, (page - 1) * limit]))
        return rows, total

    async def count_tenant_stores(self, tenant_id: str) -> int:
        async with self.connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM stores WHERE tenant_id = ?", [tenant_id]).fetchone()[0]

    async def list_syncable_stores(self) -> List[Dict[str, Any]]:
        """Active stores that have an access token."""
        async with self.connection() as conn:
            return fetch_dicts(conn.execute(f"""
                SELECT {STORE_COLUMNS} FROM stores
                WHERE is_active AND access_token IS NOT NULL
                ORDER BY created_at
            """))

    async def update_store(self, store_id: str, **fields: Any) -> Optional[Dict[str, Any]]:
        """
        Update the given store columns.

        Raises:
            ValueError: If a field is not updatable
        """
        unknown = set(fields) - UPDATABLE_STORE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update store fields: {sorted(unknown)}")

        async with self.connection() as conn:
            if fields:
                assignments = ", ".join(f"{c} = ?" for c in fields)
                conn.execute(
                    f"UPDATE stores SET {assignments}, updated_at = ? WHERE id = ?",
                    list(fields.values()) + [utcnow(), store_id],
                )
            return fetch_dict(conn.execute(
                f"SELECT {STORE_COLUMNS} FROM stores WHERE id = ?", [store_id]
            ))

    async def disconnect_store(self, store_id: str) -> None:
        """Drop the access token and deactivate the store."""
        await self.update_store(store_id, access_token=None, is_active=False)
        logger.info("Store disconnected", extra={"store_id": store_id})

    async def set_last_synced_at(self, store_id: str, synced_at: Optional[datetime] = None) -> None:
        async with self.connection() as conn:
            conn.execute(
                "UPDATE stores SET last_synced_at = ? WHERE id = ?",
                [synced_at or utcnow(), store_id],
            )

    async def delete_store(self, store_id: str) -> bool:
        """
        Delete a store and everything synced for it, in one transaction.

        Returns:
            False if the store did not exist
        """
        async with self.transaction() as conn:
            if not conn.execute("SELECT 1 FROM stores WHERE id = ?", [store_id]).fetchone():
                return False
            self._delete_store_data(conn, "store_id = ?", [store_id])
            conn.execute("DELETE FROM stores WHERE id = ?", [store_id])

        logger.info("Store deleted", extra={"store_id": store_id})
        return True

    async def count_store_entities(self, store_id: str) -> Dict[str, int]:
        """Number of mirrored products, customers and orders."""
        async with self.connection() as conn:
            row = conn.execute("""
                SELECT
                    (SELECT COUNT(*) FROM products WHERE store_id = ?),
                    (SELECT COUNT(*) FROM customers WHERE store_id = ?),
                    (SELECT COUNT(*) FROM orders WHERE store_id = ?)
            """, [store_id, store_id, store_id]).fetchone()
        return {"products": row[0], "customers": row[1], "orders": row[2]}
