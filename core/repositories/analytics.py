"""DuckDBStore dashboard analytics methods.

All aggregation happens in SQL over ``orders`` and the normalized
``order_line_items`` table. Date ranges are inclusive and compared against
the order's ``created_at`` (naive UTC).
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.duckdb_constants import LONG_QUERY_TIMEOUT

UNCATEGORIZED = "Uncategorized"
UNKNOWN_VENDOR = "Unknown"

_TSHIRT_RE = re.compile(r"(t\s*-?\s*shirt|tee\b|tshirt|tees)", re.IGNORECASE)
_TYPE_SYNONYMS = (
    (_TSHIRT_RE, "T-Shirts"),
    (re.compile(r"(hoodie|sweatshirt)", re.IGNORECASE), "Hoodies"),
    (re.compile(r"(pant|trouser|jean)", re.IGNORECASE), "Bottoms"),
    (re.compile(r"(dress|kurti|gown)", re.IGNORECASE), "Dresses"),
)


def normalize_product_type(value: Optional[str]) -> str:
    """Map free-form Shopify product types onto a small set of dashboard categories."""
    text = (value or "").strip().lower()
    if not text:
        return UNCATEGORIZED
    for pattern, category in _TYPE_SYNONYMS:
        if pattern.search(text):
            return category
    return re.sub(r"\s+", " ", text).title()


def _group_key(group_by: str, product_type: Optional[str], vendor: Optional[str], title: Optional[str]) -> str:
    if group_by == "vendor":
        return vendor or UNKNOWN_VENDOR
    key = normalize_product_type(product_type)
    # Untyped products: fall back to the title for the most common category
    if key == UNCATEGORIZED and title and _TSHIRT_RE.search(title):
        return "T-Shirts"
    return key


class AnalyticsMixin:

    # ─── Store-wide ───────────────────────────────────────────────────────────

    async def get_store_summary(self, store_id: str) -> Dict[str, Any]:
        """Entity counts and lifetime revenue."""
        async with self.connection() as conn:
            row = conn.execute("""
                SELECT
                    (SELECT COUNT(*) FROM products WHERE store_id = ?),
                    (SELECT COUNT(*) FROM customers WHERE store_id = ?),
                    (SELECT COUNT(*) FROM orders WHERE store_id = ?),
                    (SELECT COALESCE(SUM(total_price), 0) FROM orders WHERE store_id = ?)
            """, [store_id] * 4).fetchone()
        return {
            "total_products": row[0],
            "total_customers": row[1],
            "total_orders": row[2],
            "total_revenue": float(row[3]),
        }

    async def get_order_totals(self, store_id: str) -> Dict[str, float]:
        """Lifetime sums of the order money columns."""
        async with self.connection() as conn:
            row = conn.execute("""
                SELECT
                    COALESCE(SUM(total_price), 0),
                    COALESCE(SUM(subtotal_price), 0),
                    COALESCE(SUM(total_tax), 0),
                    COALESCE(SUM(total_discounts), 0),
                    COALESCE(SUM(total_line_items_price), 0)
                FROM orders
                WHERE store_id = ?
            """, [store_id]).fetchone()
        keys = ("total_price", "subtotal_price", "total_tax", "total_discounts", "total_line_items_price")
        return {key: float(value) for key, value in zip(keys, row)}

    async def get_top_customers_by_spend(self, store_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Customers ranked by the stored Shopify lifetime spend."""
        rows = await self._fetch_all("""
            SELECT
                c.id, c.first_name, c.last_name, c.email, c.total_spend,
                (SELECT COUNT(*) FROM orders o WHERE o.customer_id = c.id) AS orders
            FROM customers c
            WHERE c.store_id = ?
            ORDER BY c.total_spend DESC, c.id
            LIMIT ?
        """, [store_id, limit])
        return [
            {
                "id": r[0],
                "first_name": r[1],
                "last_name": r[2],
                "email": r[3],
                "total_spend": float(r[4]),
                "orders_count": r[5],
            }
            for r in rows
        ]

    # ─── Dashboard metrics ────────────────────────────────────────────────────

    async def get_top_products(self, store_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        """
        Products ranked by units sold across all orders.

        Line items whose product is not mirrored locally are dropped before
        the limit is applied.
        """
        rows = await self._fetch_all("""
            SELECT
                p.id,
                p.title,
                p.price,
                SUM(li.quantity) AS sold,
                CAST(SUM(li.quantity * li.price) AS DOUBLE) AS revenue
            FROM order_line_items li
            JOIN products p
              ON p.store_id = li.store_id AND p.shopify_id = li.product_id
            WHERE li.store_id = ?
            GROUP BY p.id, p.title, p.price
            ORDER BY sold DESC, p.id
            LIMIT ?
        """, [store_id, limit], timeout=LONG_QUERY_TIMEOUT)
        return [
            {
                "id": r[0],
                "title": r[1],
                "price": float(r[2]),
                "sold": int(r[3]),
                "revenue": round(r[4] or 0),
            }
            for r in rows
        ]

    async def get_customer_insights(self, store_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        """
        Top spenders computed from orders, grouped by lower-cased email.

        Guest orders are grouped by their order email; orders with no email
        at all share one ``unknown`` bucket.
        """
        rows = await self._fetch_all("""
            WITH keyed AS (
                SELECT
                    COALESCE(NULLIF(c.email, ''), NULLIF(o.customer_email, ''), 'unknown@unknown.local') AS email,
                    NULLIF(c.first_name, '') AS first_name,
                    NULLIF(c.last_name, '') AS last_name,
                    o.total_price,
                    o.created_at
                FROM orders o
                LEFT JOIN customers c ON c.id = o.customer_id
                WHERE o.store_id = ?
            )
            SELECT
                LOWER(email) AS key,
                MIN(email) AS email,
                MIN(first_name) AS first_name,
                MIN(last_name) AS last_name,
                CAST(SUM(total_price) AS DOUBLE) AS total_spend,
                COUNT(*) AS orders_count,
                MAX(created_at) AS last_order_date
            FROM keyed
            GROUP BY LOWER(email)
            ORDER BY total_spend DESC, key
            LIMIT ?
        """, [store_id, limit], timeout=LONG_QUERY_TIMEOUT)
        return [
            {
                "id": r[0],
                "first_name": r[2],
                "last_name": r[3],
                "email": r[1],
                "total_spend": round(r[4] or 0),
                "orders_count": r[5],
                "last_order_date": r[6],
            }
            for r in rows
        ]

    async def get_daily_sales(
        self,
        store_id: str,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Per-day order count and revenue, oldest first. Days without orders are omitted."""
        params: list = [store_id, start]
        end_clause = ""
        if end is not None:
            end_clause = "AND created_at <= ?"
            params.append(end)

        rows = await self._fetch_all(f"""
            SELECT
                CAST(created_at AS DATE) AS day,
                CAST(SUM(total_price) AS DOUBLE) AS sales,
                COUNT(*) AS orders
            FROM orders
            WHERE store_id = ? AND created_at >= ? {end_clause}
            GROUP BY day
            ORDER BY day
        """, params, timeout=LONG_QUERY_TIMEOUT)
        return [
            {"date": r[0].isoformat(), "sales": round(r[1] or 0), "orders": r[2]}
            for r in rows
        ]

    async def get_customer_split(self, store_id: str, start: datetime, end: datetime) -> Dict[str, Any]:
        """
        New vs returning orders inside ``[start, end]``.

        An order is returning when its customer (customer id, else order email)
        ordered before ``start`` or already ordered earlier inside the range.
        """
        rows = await self._fetch_all("""
            WITH keyed AS (
                SELECT
                    id,
                    COALESCE(customer_id, NULLIF(customer_email, ''), 'unknown') AS ckey,
                    total_price,
                    created_at
                FROM orders
                WHERE store_id = ?
            ),
            in_range AS (
                SELECT
                    ckey,
                    total_price,
                    ROW_NUMBER() OVER (PARTITION BY ckey ORDER BY created_at, id) AS seq
                FROM keyed
                WHERE created_at BETWEEN ? AND ?
            ),
            earlier AS (
                SELECT DISTINCT ckey FROM keyed WHERE created_at < ?
            )
            SELECT
                (r.seq > 1 OR e.ckey IS NOT NULL) AS "returning",
                COUNT(*) AS orders,
                CAST(COALESCE(SUM(r.total_price), 0) AS DOUBLE) AS revenue
            FROM in_range r
            LEFT JOIN earlier e ON e.ckey = r.ckey
            GROUP BY "returning"
        """, [store_id, start, end, start], timeout=LONG_QUERY_TIMEOUT)

        split = {
            "new": {"orders": 0, "revenue": 0},
            "returning": {"orders": 0, "revenue": 0},
        }
        for returning, orders, revenue in rows:
            split["returning" if returning else "new"] = {"orders": orders, "revenue": round(revenue)}
        return split

    async def get_sales_by_type(
        self,
        store_id: str,
        start: datetime,
        end: datetime,
        group_by: str = "productType",
    ) -> List[Dict[str, Any]]:
        """
        Line-item revenue grouped by normalized product type or vendor.

        Each order counts once per group it contributes to. Line items without
        a product id are skipped; products not mirrored locally count as
        ``Uncategorized`` / ``Unknown``.
        """
        df = await self._fetch_df("""
            SELECT
                li.order_id,
                p.product_type,
                p.vendor,
                p.title,
                CAST(li.quantity * li.price AS DOUBLE) AS revenue
            FROM order_line_items li
            LEFT JOIN products p
              ON p.store_id = li.store_id AND p.shopify_id = li.product_id
            WHERE li.store_id = ?
              AND li.product_id IS NOT NULL
              AND li.created_at BETWEEN ? AND ?
        """, [store_id, start, end], timeout=LONG_QUERY_TIMEOUT)

        if df.empty:
            return []

        df = df.astype(object).where(df.notna(), None)
        df["type"] = [
            _group_key(group_by, pt, vendor, title)
            for pt, vendor, title in zip(df["product_type"], df["vendor"], df["title"])
        ]
        df["revenue"] = df["revenue"].astype(float)
        grouped = (
            df.groupby("type")
            .agg(revenue=("revenue", "sum"), orders=("order_id", "nunique"))
            .reset_index()
            .sort_values(["revenue", "type"], ascending=[False, True])
        )
        return [
            {"type": row.type, "revenue": round(row.revenue), "orders": int(row.orders)}
            for row in grouped.itertuples(index=False)
        ]

    async def get_traffic_heatmap(
        self,
        store_id: str,
        start: datetime,
        end: datetime,
        metric: str = "orders",
    ) -> List[List[float]]:
        """7x24 grid of orders (or revenue) by weekday and hour; row 0 is Sunday."""
        rows = await self._fetch_all("""
            SELECT
                dayofweek(created_at) AS dow,
                hour(created_at) AS hr,
                COUNT(*) AS orders,
                CAST(SUM(total_price) AS DOUBLE) AS revenue
            FROM orders
            WHERE store_id = ? AND created_at BETWEEN ? AND ?
            GROUP BY dow, hr
        """, [store_id, start, end], timeout=LONG_QUERY_TIMEOUT)

        grid: List[List[float]] = [[0] * 24 for _ in range(7)]
        for dow, hr, orders, revenue in rows:
            grid[dow][hr] = round(revenue, 2) if metric == "revenue" else orders
        return grid

    async def get_discounts_summary(self, store_id: str, start: datetime, end: datetime) -> Dict[str, Any]:
        async with self.connection() as conn:
            row = conn.execute("""
                SELECT
                    CAST(COALESCE(SUM(total_discounts), 0) AS DOUBLE),
                    CAST(COALESCE(SUM(total_price), 0) AS DOUBLE),
                    COUNT(*)
                FROM orders
                WHERE store_id = ? AND created_at BETWEEN ? AND ?
            """, [store_id, start, end]).fetchone()

        total_discounts, total_revenue, orders_count = row
        avg_discount = total_discounts / orders_count if orders_count else 0
        return {
            "total_discounts": round(total_discounts),
            "avg_discount_per_order": round(avg_discount),
            "net_revenue": round(total_revenue - total_discounts),
            "orders_count": orders_count,
        }
