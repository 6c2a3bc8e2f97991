"""
DuckDB persistence for Shopify Insights.

One database file holds tenants, stores, users, the mirrored Shopify
entities (products, customers, orders and their line items), sync jobs and
the event audit trail. Queries live in the repository mixins under
``core.repositories``, one per table family; ``AnalyticsMixin`` holds the
dashboard aggregations.

DuckDB has no ``ON DELETE`` actions, so cascades (tenant -> stores ->
entities) are done by the mixins inside explicit transactions.
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

import duckdb
import pandas as pd

from core.duckdb_constants import DB_PATH, DEFAULT_QUERY_TIMEOUT
from core.exceptions import QueryTimeoutError
from core.observability import get_logger
from core.repositories import (
    AnalyticsMixin,
    CustomersMixin,
    EventsMixin,
    OrdersMixin,
    ProductsMixin,
    StoresMixin,
    SyncJobsMixin,
    TenantsMixin,
    UsersMixin,
)

logger = get_logger(__name__)

IN_MEMORY = ":memory:"

# cursor method per fetch mode of ``_query``
_FETCHERS = {
    "one": "fetchone",
    "all": "fetchall",
    "df": "fetchdf",
}


class DuckDBStore(
    TenantsMixin, StoresMixin, UsersMixin,
    ProductsMixin, CustomersMixin, OrdersMixin,
    SyncJobsMixin, EventsMixin, AnalyticsMixin,
):
    """
    Single-connection DuckDB store shared by the API and the sync runner.

    A DuckDB connection must not be used from two threads at once, so every
    access goes through ``connection()``, which holds an asyncio lock. Heavy
    reads run on a one-thread executor under a timeout; short writes run
    inline while the lock is held.
    """

    def __init__(self, db_path: Path = DB_PATH):
        self.db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = asyncio.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._total_queries = 0

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == IN_MEMORY

    async def connect(self) -> None:
        """Open the database (creating parent dirs and tables as needed)."""
        async with self._lock:
            if self._connection is not None:
                return
            if not self.is_memory:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            conn = duckdb.connect(str(self.db_path))
            self._init_schema(conn)
            self._connection = conn
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="duckdb")
            logger.info(f"Opened DuckDB database {self.db_path}")

    async def close(self) -> None:
        """Checkpoint a file database and release the connection."""
        async with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None
            if self._connection is None:
                return
            if not self.is_memory:
                self._connection.execute("CHECKPOINT")
            self._connection.close()
            self._connection = None
            logger.info(f"Closed DuckDB database {self.db_path}")

    def describe(self) -> Dict[str, Any]:
        """Connection facts for the detailed health check."""
        return {
            "path": str(self.db_path),
            "open": self._connection is not None,
            "queries_served": self._total_queries,
        }

    @asynccontextmanager
    async def connection(self):
        """
        Hold the store lock and yield the raw connection.

        Not re-entrant: do not await another store method inside the block.
        """
        if self._connection is None:
            await self.connect()
        async with self._lock:
            self._total_queries += 1
            yield self._connection

    @asynccontextmanager
    async def transaction(self):
        """``connection()`` wrapped in BEGIN/COMMIT, rolled back if the block raises."""
        async with self.connection() as conn:
            conn.execute("BEGIN TRANSACTION")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    # ─── Off-loop reads ──────────────────────────────────────────────────────

    async def _query(self, sql: str, params: Optional[list], timeout: float, mode: str):
        """
        Run ``sql`` on the executor thread and fetch per ``mode``.

        On timeout the running statement is interrupted before the lock is
        released and ``QueryTimeoutError`` is raised.
        """
        fetch = _FETCHERS[mode]
        async with self.connection() as conn:
            job = asyncio.get_running_loop().run_in_executor(
                self._executor, lambda: getattr(conn.execute(sql, params or []), fetch)()
            )
            try:
                return await asyncio.wait_for(job, timeout=timeout)
            except asyncio.TimeoutError:
                conn.interrupt()
                raise QueryTimeoutError(sql, timeout, f"{fetch} interrupted")

    async def _fetch_one(self, query: str, params: list = None, timeout: float = DEFAULT_QUERY_TIMEOUT) -> Optional[tuple]:
        return await self._query(query, params, timeout, "one")

    async def _fetch_all(self, query: str, params: list = None, timeout: float = DEFAULT_QUERY_TIMEOUT) -> List[tuple]:
        return await self._query(query, params, timeout, "all")

    async def _fetch_df(self, query: str, params: list = None, timeout: float = DEFAULT_QUERY_TIMEOUT) -> pd.DataFrame:
        return await self._query(query, params, timeout, "df")

    # ─── Schema ──────────────────────────────────────────────────────────────

    @staticmethod
    def _init_schema(conn: duckdb.DuckDBPyConnection) -> None:
        """Create database schema if not exists."""
        conn.execute("""
        -- Tenants (isolation boundary)
        CREATE TABLE IF NOT EXISTS tenants (
            id VARCHAR PRIMARY KEY,
            name VARCHAR NOT NULL,
            external_id VARCHAR,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL
        );

        -- Connected Shopify shops
        CREATE TABLE IF NOT EXISTS stores (
            id VARCHAR PRIMARY KEY,
            tenant_id VARCHAR NOT NULL,
            name VARCHAR NOT NULL,
            domain VARCHAR NOT NULL,
            shopify_id VARCHAR,
            access_token VARCHAR,  -- plaintext, as issued by Shopify
            scope VARCHAR,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            last_synced_at TIMESTAMP,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_stores_tenant ON stores(tenant_id);

        -- Dashboard accounts
        CREATE TABLE IF NOT EXISTS users (
            id VARCHAR PRIMARY KEY,
            tenant_id VARCHAR,
            email VARCHAR NOT NULL,
            username VARCHAR NOT NULL,
            password_hash VARCHAR NOT NULL,
            is_verified BOOLEAN NOT NULL DEFAULT FALSE,
            failed_login_attempts INTEGER NOT NULL DEFAULT 0,
            last_login_at TIMESTAMP,
            password_changed_at TIMESTAMP,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL
        );

        -- Mirrored Shopify products (id = {store_id}_{shopify_id})
        CREATE TABLE IF NOT EXISTS products (
            id VARCHAR PRIMARY KEY,
            store_id VARCHAR NOT NULL,
            tenant_id VARCHAR NOT NULL,
            shopify_id VARCHAR NOT NULL,
            title VARCHAR NOT NULL,
            description VARCHAR,
            vendor VARCHAR,
            product_type VARCHAR,
            handle VARCHAR,
            status VARCHAR,
            sku VARCHAR,
            price DECIMAL(12, 2) NOT NULL DEFAULT 0,
            compare_at_price DECIMAL(12, 2),
            inventory_quantity INTEGER NOT NULL DEFAULT 0,
            image_url VARCHAR,
            tags VARCHAR,      -- JSON list
            images VARCHAR,    -- JSON
            variants VARCHAR,  -- JSON
            options VARCHAR,   -- JSON
            published_at TIMESTAMP,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL,
            synced_at TIMESTAMP NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_products_store ON products(store_id);

        -- Mirrored Shopify customers
        CREATE TABLE IF NOT EXISTS customers (
            id VARCHAR PRIMARY KEY,
            store_id VARCHAR NOT NULL,
            tenant_id VARCHAR NOT NULL,
            shopify_id VARCHAR NOT NULL,
            email VARCHAR,
            first_name VARCHAR,
            last_name VARCHAR,
            phone VARCHAR,
            accepts_marketing BOOLEAN DEFAULT FALSE,
            total_spend DECIMAL(12, 2) NOT NULL DEFAULT 0,
            orders_count INTEGER NOT NULL DEFAULT 0,
            state VARCHAR,
            verified_email BOOLEAN DEFAULT FALSE,
            currency VARCHAR,
            tags VARCHAR,             -- JSON list
            addresses VARCHAR,        -- JSON
            default_address VARCHAR,  -- JSON
            last_order_id VARCHAR,
            last_order_date TIMESTAMP,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL,
            synced_at TIMESTAMP NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_customers_store ON customers(store_id);

        -- Mirrored Shopify orders
        CREATE TABLE IF NOT EXISTS orders (
            id VARCHAR PRIMARY KEY,
            store_id VARCHAR NOT NULL,
            tenant_id VARCHAR NOT NULL,
            shopify_id VARCHAR NOT NULL,
            order_number VARCHAR NOT NULL,
            customer_id VARCHAR,  -- {store_id}_{customer shopify id}, NULL for guests
            customer_email VARCHAR,
            financial_status VARCHAR,
            fulfillment_status VARCHAR,
            currency VARCHAR,
            total_price DECIMAL(12, 2) NOT NULL DEFAULT 0,
            subtotal_price DECIMAL(12, 2) NOT NULL DEFAULT 0,
            total_tax DECIMAL(12, 2) NOT NULL DEFAULT 0,
            total_discounts DECIMAL(12, 2) NOT NULL DEFAULT 0,
            total_line_items_price DECIMAL(12, 2) NOT NULL DEFAULT 0,
            line_items VARCHAR,        -- JSON, as received
            shipping_address VARCHAR,  -- JSON
            billing_address VARCHAR,   -- JSON
            shipping_lines VARCHAR,    -- JSON
            discount_codes VARCHAR,    -- JSON
            refunds VARCHAR,           -- JSON
            transactions VARCHAR,      -- JSON
            note VARCHAR,
            tags VARCHAR,              -- JSON list
            customer_locale VARCHAR,
            order_status_url VARCHAR,
            processed_at TIMESTAMP,
            cancelled_at TIMESTAMP,
            closed_at TIMESTAMP,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL,
            synced_at TIMESTAMP NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_orders_store ON orders(store_id);
        CREATE INDEX IF NOT EXISTS idx_orders_store_created ON orders(store_id, created_at);

        -- Normalized line items for SQL aggregation (replaced per order on every upsert)
        CREATE TABLE IF NOT EXISTS order_line_items (
            order_id VARCHAR NOT NULL,
            store_id VARCHAR NOT NULL,
            shopify_id VARCHAR,
            product_id VARCHAR,  -- Shopify product id
            variant_id VARCHAR,
            title VARCHAR,
            sku VARCHAR,
            quantity INTEGER NOT NULL DEFAULT 1,
            price DECIMAL(12, 2) NOT NULL DEFAULT 0,
            created_at TIMESTAMP NOT NULL  -- copied from the order
        );
        CREATE INDEX IF NOT EXISTS idx_line_items_order ON order_line_items(order_id);
        CREATE INDEX IF NOT EXISTS idx_line_items_store ON order_line_items(store_id);

        -- Sync job records
        CREATE TABLE IF NOT EXISTS sync_jobs (
            id VARCHAR PRIMARY KEY,
            store_id VARCHAR NOT NULL,
            tenant_id VARCHAR NOT NULL,
            data_type VARCHAR NOT NULL,
            status VARCHAR NOT NULL,
            stats VARCHAR,  -- JSON {total, created, updated, errors}
            message VARCHAR,
            error VARCHAR,
            created_at TIMESTAMP NOT NULL,
            started_at TIMESTAMP,
            finished_at TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS idx_sync_jobs_store ON sync_jobs(store_id);

        -- Sync lifecycle audit trail
        CREATE TABLE IF NOT EXISTS events (
            id VARCHAR PRIMARY KEY,
            store_id VARCHAR NOT NULL,
            tenant_id VARCHAR,
            type VARCHAR NOT NULL,
            payload VARCHAR,  -- JSON
            created_at TIMESTAMP NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_events_store ON events(store_id);
        """)

    # ─── Monitoring ──────────────────────────────────────────────────────────

    async def ping(self) -> bool:
        """Cheap liveness check for the health endpoint."""
        row = await self._fetch_one("SELECT 1", timeout=5.0)
        return bool(row and row[0] == 1)

    async def get_stats(self) -> Dict[str, Any]:
        """Row counts per table plus the database file size."""
        tables = (
            "tenants", "stores", "users", "products", "customers",
            "orders", "order_line_items", "sync_jobs", "events",
        )
        async with self.connection() as conn:
            counts = {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in tables
            }

        size_mb = 0
        if not self.is_memory and Path(self.db_path).exists():
            size_mb = round(Path(self.db_path).stat().st_size / 1024 / 1024, 2)

        return {**counts, "db_size_mb": size_mb}
