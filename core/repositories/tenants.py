"""DuckDBStore tenant methods."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from core.duckdb_constants import fetch_dict, fetch_dicts, new_id
from core.models import utcnow
from core.observability import get_logger

logger = get_logger(__name__)

TENANT_COLUMNS = "id, name, external_id, created_at, updated_at"


class TenantsMixin:

    async def create_tenant(self, name: str, external_id: Optional[str] = None) -> Dict[str, Any]:
        """Insert a tenant. Name uniqueness is checked by the caller."""
        now = utcnow()
        tenant = {
            "id": new_id(),
            "name": name,
            "external_id": external_id,
            "created_at": now,
            "updated_at": now,
        }
        async with self.connection() as conn:
            conn.execute(
                f"INSERT INTO tenants ({TENANT_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                [tenant["id"], name, external_id, now, now],
            )
        logger.info(f"Tenant created: {name}", extra={"tenant_id": tenant["id"]})
        return tenant

    async def get_tenant(self, tenant_id: str) -> Optional[Dict[str, Any]]:
        async with self.connection() as conn:
            return fetch_dict(conn.execute(
                f"SELECT {TENANT_COLUMNS} FROM tenants WHERE id = ?", [tenant_id]
            ))

    async def get_tenant_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        """Case-insensitive name lookup."""
        async with self.connection() as conn:
            return fetch_dict(conn.execute(
                f"SELECT {TENANT_COLUMNS} FROM tenants WHERE lower(name) = lower(?)", [name]
            ))

    async def update_tenant(self, tenant_id: str, name: str) -> Optional[Dict[str, Any]]:
        async with self.connection() as conn:
            conn.execute(
                "UPDATE tenants SET name = ?, updated_at = ? WHERE id = ?",
                [name, utcnow(), tenant_id],
            )
            return fetch_dict(conn.execute(
                f"SELECT {TENANT_COLUMNS} FROM tenants WHERE id = ?", [tenant_id]
            ))

    async def list_tenant_users(self, tenant_id: str) -> List[Dict[str, Any]]:
        async with self.connection() as conn:
            return fetch_dicts(conn.execute("""
                SELECT id, email, username, is_verified, last_login_at, created_at
                FROM users
                WHERE tenant_id = ?
                ORDER BY created_at
            """, [tenant_id]))

    async def delete_tenant(self, tenant_id: str) -> bool:
        """
        Delete a tenant with all of its stores, mirrored data and users.

        Runs in one transaction.

        Returns:
            False if the tenant did not exist
        """
        async with self.transaction() as conn:
            if not conn.execute("SELECT 1 FROM tenants WHERE id = ?", [tenant_id]).fetchone():
                return False

            self._delete_store_data(
                conn, "store_id IN (SELECT id FROM stores WHERE tenant_id = ?)", [tenant_id]
            )
            conn.execute("DELETE FROM stores WHERE tenant_id = ?", [tenant_id])
            conn.execute("DELETE FROM users WHERE tenant_id = ?", [tenant_id])
            conn.execute("DELETE FROM tenants WHERE id = ?", [tenant_id])

        logger.info("Tenant deleted", extra={"tenant_id": tenant_id})
        return True
