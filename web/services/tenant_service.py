"""Tenant management: creation, membership and cascading deletion."""
from typing import Any, Dict, List, Optional

from core.duckdb_store import DuckDBStore
from core.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from core.observability import get_logger
from core.validators import validate_email, validate_tenant_name
from web.services.auth_service import iso, public_user
from web.services.store_service import public_store

logger = get_logger(__name__)


def public_tenant(tenant: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": tenant["id"],
        "name": tenant["name"],
        "externalId": tenant.get("external_id"),
        "createdAt": iso(tenant.get("created_at")),
        "updatedAt": iso(tenant.get("updated_at")),
    }


class TenantService:

    def __init__(self, store: DuckDBStore):
        self.store = store

    async def _get_accessible(self, user: Dict[str, Any], tenant_id: str) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: Tenant does not exist
            ForbiddenError: Caller is not a member
        """
        tenant = await self.store.get_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")
        if user.get("tenant_id") != tenant_id:
            raise ForbiddenError("You do not have permission to access this tenant")
        return tenant

    async def _ensure_name_free(self, name: str, tenant_id: Optional[str] = None) -> None:
        existing = await self.store.get_tenant_by_name(name)
        if existing and existing["id"] != tenant_id:
            raise ConflictError("Tenant with this name already exists")

    async def create_tenant(self, user: Dict[str, Any], name: Optional[str]) -> Dict[str, Any]:
        """Create a tenant and move the caller into it."""
        name = validate_tenant_name(name)
        await self._ensure_name_free(name)

        tenant = await self.store.create_tenant(name)
        await self.store.set_user_tenant(user["id"], tenant["id"])
        return public_tenant(tenant)

    async def get_tenant(self, user: Dict[str, Any], tenant_id: str) -> Dict[str, Any]:
        """The tenant with its users and stores."""
        tenant = await self._get_accessible(user, tenant_id)
        users = await self.store.list_tenant_users(tenant_id)
        stores, _ = await self.store.list_stores(tenant_id, page=1, limit=1000)
        return {
            **public_tenant(tenant),
            "users": [self._member(u) for u in users],
            "stores": [public_store(s) for s in stores],
        }

    async def update_tenant(self, user: Dict[str, Any], tenant_id: str, name: Optional[str]) -> Dict[str, Any]:
        await self._get_accessible(user, tenant_id)
        if name is None:
            raise BadRequestError("No valid fields to update")

        name = validate_tenant_name(name)
        await self._ensure_name_free(name, tenant_id)
        tenant = await self.store.update_tenant(tenant_id, name)
        return public_tenant(tenant)

    async def delete_tenant(self, user: Dict[str, Any], tenant_id: str) -> None:
        await self._get_accessible(user, tenant_id)
        await self.store.delete_tenant(tenant_id)
        logger.info("Tenant deleted by member", extra={"tenant_id": tenant_id, "user_id": user["id"]})

    # ─── Membership ───────────────────────────────────────────────────────────

    @staticmethod
    def _member(user: Dict[str, Any]) -> Dict[str, Any]:
        member = public_user(user)
        member.pop("tenantId", None)
        return member

    async def list_users(self, user: Dict[str, Any], tenant_id: str) -> List[Dict[str, Any]]:
        await self._get_accessible(user, tenant_id)
        return [self._member(u) for u in await self.store.list_tenant_users(tenant_id)]

    async def add_user(self, user: Dict[str, Any], tenant_id: str, email: Optional[str]) -> Dict[str, Any]:
        await self._get_accessible(user, tenant_id)
        email = validate_email(email)

        target = await self.store.get_user_by_email(email)
        if target is None:
            raise NotFoundError("No user found with that email")
        if target.get("tenant_id"):
            raise BadRequestError("User already belongs to a tenant")

        await self.store.set_user_tenant(target["id"], tenant_id)
        target["tenant_id"] = tenant_id
        return public_user(target)

    async def remove_user(self, user: Dict[str, Any], tenant_id: str, user_id: str) -> None:
        await self._get_accessible(user, tenant_id)
        if user_id == user["id"]:
            raise BadRequestError("You cannot remove yourself from the tenant")

        target = await self.store.get_user(user_id)
        if target is None or target.get("tenant_id") != tenant_id:
            raise NotFoundError("User not found in this tenant")
        await self.store.set_user_tenant(user_id, None)
