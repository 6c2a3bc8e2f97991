"""
Dashboard service: per-store analytics shaped for the frontend charts.

Every metric is computed in DuckDB and cached in Redis under
``analytics:{store_id}:{metric}:...``. Cache keys are built from the raw
request parameters, so a default "last 30 days" result is reused until the
TTL expires or a sync for the store invalidates it.
"""
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.cache import RedisCache, analytics_key
from core.duckdb_store import DuckDBStore
from core.models import utcnow
from core.observability import get_logger, timed
from core.validators import (
    validate_date_range,
    validate_group_by,
    validate_limit,
    validate_metric,
    validate_period,
)

logger = get_logger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


# ─── Formatters ──────────────────────────────────────────────────────────────

def format_recent_order(row: Dict[str, Any]) -> Dict[str, Any]:
    """Recent order row -> ``{id, name, createdAt, financialStatus, totalPrice, customer?}``."""
    order = {
        "id": row["id"],
        "name": row["order_number"],
        "createdAt": _iso(row["created_at"]),
        "financialStatus": row.get("financial_status") or "pending",
        "totalPrice": f"{row['total_price']:.2f}",
    }
    if row.get("customer_id"):
        order["customer"] = {
            "firstName": row.get("first_name") or "",
            "lastName": row.get("last_name") or "",
            "email": row.get("email") or row.get("customer_email") or "",
        }
    return order


def format_customer(row: Dict[str, Any]) -> Dict[str, Any]:
    customer = {
        "id": row["id"],
        "firstName": row.get("first_name") or "",
        "lastName": row.get("last_name") or "",
        "email": row.get("email") or "",
        "totalSpend": row["total_spend"],
        "ordersCount": row["orders_count"],
    }
    if "last_order_date" in row:
        customer["lastOrderDate"] = _iso(row["last_order_date"])
    return customer


class DashboardService:
    """Cached analytics for one store at a time. Access checks belong to the caller."""

    def __init__(self, store: DuckDBStore, cache: RedisCache, ttl: Optional[int] = None):
        self.store = store
        self.cache = cache
        self.ttl = ttl

    async def _cached(
        self,
        store_id: str,
        metric: str,
        factory: Callable[[], Awaitable[Any]],
        /,
        **params: Any,
    ) -> Any:
        return await self.cache.get_or_set(
            analytics_key(store_id, metric, **params), factory, ttl=self.ttl
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # SNAPSHOT METRICS
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_summary(self, store_id: str) -> Dict[str, Any]:
        """Totals across everything mirrored for the store."""
        return await self._cached(store_id, "summary", lambda: self.store.get_store_summary(store_id))

    async def get_top_products(self, store_id: str, limit=None) -> List[Dict[str, Any]]:
        limit = validate_limit(limit)
        return await self._cached(
            store_id, "top_products", lambda: self.store.get_top_products(store_id, limit), limit=limit
        )

    async def get_recent_orders(self, store_id: str, limit=None) -> List[Dict[str, Any]]:
        limit = validate_limit(limit)

        async def build():
            return [format_recent_order(r) for r in await self.store.get_recent_orders(store_id, limit)]

        return await self._cached(store_id, "recent_orders", build, limit=limit)

    async def get_customer_insights(self, store_id: str) -> List[Dict[str, Any]]:
        async def build():
            return [format_customer(r) for r in await self.store.get_customer_insights(store_id, 5)]

        return await self._cached(store_id, "customer_insights", build)

    # ═══════════════════════════════════════════════════════════════════════════
    # RANGE METRICS
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_sales(
        self,
        store_id: str,
        period: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Daily sales buckets.

        An explicit ``startDate``/``endDate`` wins over ``period``; an end
        date on its own covers all history up to it.
        """
        if start_date or end_date:
            start, end = validate_date_range(start_date, end_date, default_days=None)
        else:
            start, end = utcnow() - timedelta(days=validate_period(period)), None

        return await self._cached(
            store_id,
            "sales",
            lambda: self.store.get_daily_sales(store_id, start, end),
            period=period,
            start=start_date,
            end=end_date,
        )

    async def get_customer_split(
        self, store_id: str, start_date: Optional[str] = None, end_date: Optional[str] = None
    ) -> Dict[str, Any]:
        start, end = validate_date_range(start_date, end_date)

        async def build():
            split = await self.store.get_customer_split(store_id, start, end)
            return {**split, "startDate": start.isoformat(), "endDate": end.isoformat()}

        return await self._cached(store_id, "customer_split", build, start=start_date, end=end_date)

    @timed("dashboard_sales_by_type")
    async def get_sales_by_type(
        self,
        store_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        group_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        start, end = validate_date_range(start_date, end_date)
        group_by = validate_group_by(group_by)
        return await self._cached(
            store_id,
            "sales_by_type",
            lambda: self.store.get_sales_by_type(store_id, start, end, group_by),
            start=start_date,
            end=end_date,
            group_by=group_by,
        )

    @timed("dashboard_traffic_heatmap")
    async def get_traffic_heatmap(
        self,
        store_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        metric: Optional[str] = None,
    ) -> Dict[str, Any]:
        start, end = validate_date_range(start_date, end_date)
        metric = validate_metric(metric)

        async def build():
            heatmap = await self.store.get_traffic_heatmap(store_id, start, end, metric)
            return {
                "metric": metric,
                "heatmap": heatmap,
                "startDate": start.isoformat(),
                "endDate": end.isoformat(),
            }

        return await self._cached(
            store_id, "traffic_heatmap", build, start=start_date, end=end_date, metric=metric
        )

    async def get_discounts(
        self, store_id: str, start_date: Optional[str] = None, end_date: Optional[str] = None
    ) -> Dict[str, Any]:
        start, end = validate_date_range(start_date, end_date)

        async def build():
            summary = await self.store.get_discounts_summary(store_id, start, end)
            return {
                "totalDiscounts": summary["total_discounts"],
                "avgDiscountPerOrder": summary["avg_discount_per_order"],
                "netRevenue": summary["net_revenue"],
                "ordersCount": summary["orders_count"],
                "startDate": start.isoformat(),
                "endDate": end.isoformat(),
            }

        return await self._cached(store_id, "discounts", build, start=start_date, end=end_date)
