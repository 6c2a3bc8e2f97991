"""
Repository mixins for DuckDBStore.

Each mixin groups the query methods of one domain area:
- TenantsMixin / StoresMixin / UsersMixin: Account and store management
- ProductsMixin / CustomersMixin / OrdersMixin: Mirrored Shopify entities
- SyncJobsMixin: Sync job records
- EventsMixin: Sync lifecycle audit trail
- AnalyticsMixin: Dashboard aggregations
"""
from core.repositories.tenants import TenantsMixin
from core.repositories.stores import StoresMixin
from core.repositories.users import UsersMixin
from core.repositories.catalog import ProductsMixin
from core.repositories.customers import CustomersMixin
from core.repositories.orders import OrdersMixin
from core.repositories.sync_jobs import SyncJobsMixin
from core.repositories.events import EventsMixin
from core.repositories.analytics import AnalyticsMixin

__all__ = [
    "TenantsMixin",
    "StoresMixin",
    "UsersMixin",
    "ProductsMixin",
    "CustomersMixin",
    "OrdersMixin",
    "SyncJobsMixin",
    "EventsMixin",
    "AnalyticsMixin",
]
