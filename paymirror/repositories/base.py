"""
Base repository with connection management and schema initialization.

The mirror tables are written by the sync/webhook pipelines; this engine only
reads them. Every table carries `tenant_id` and `sub_account_id` so each read
can be scoped without placeholder joins.
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, List, Optional, Union

import duckdb

from paymirror.config import config
from paymirror.observability import Timer, get_logger

logger = get_logger(__name__)

MEMORY_DB = ":memory:"

SCHEMA_SQL = """
-- Connected processor accounts
CREATE TABLE IF NOT EXISTS sub_accounts (
    id BIGINT PRIMARY KEY,
    tenant_id BIGINT NOT NULL,
    processor_id VARCHAR NOT NULL,
    business_name VARCHAR,
    email VARCHAR,
    country VARCHAR,
    charges_enabled BOOLEAN DEFAULT TRUE,
    created BIGINT NOT NULL,
    UNIQUE (tenant_id, processor_id)
);

CREATE TABLE IF NOT EXISTS customers (
    tenant_id BIGINT NOT NULL,
    sub_account_id BIGINT,
    processor_id VARCHAR NOT NULL,
    name VARCHAR,
    email VARCHAR,
    phone VARCHAR,
    currency VARCHAR,
    delinquent BOOLEAN DEFAULT FALSE,
    created BIGINT NOT NULL,
    PRIMARY KEY (tenant_id, processor_id)
);

CREATE TABLE IF NOT EXISTS products (
    tenant_id BIGINT NOT NULL,
    sub_account_id BIGINT,
    processor_id VARCHAR NOT NULL,
    name VARCHAR NOT NULL,
    description VARCHAR,
    active BOOLEAN DEFAULT TRUE,
    created BIGINT NOT NULL,
    PRIMARY KEY (tenant_id, processor_id)
);

CREATE TABLE IF NOT EXISTS prices (
    tenant_id BIGINT NOT NULL,
    sub_account_id BIGINT,
    processor_id VARCHAR NOT NULL,
    product_ref VARCHAR,
    unit_amount DECIMAL(12, 2),
    currency VARCHAR,
    recurring_interval VARCHAR,
    active BOOLEAN DEFAULT TRUE,
    created BIGINT NOT NULL,
    PRIMARY KEY (tenant_id, processor_id)
);

CREATE TABLE IF NOT EXISTS subscriptions (
    tenant_id BIGINT NOT NULL,
    sub_account_id BIGINT,
    processor_id VARCHAR NOT NULL,
    customer_ref VARCHAR,
    price_ref VARCHAR,
    status VARCHAR NOT NULL,
    current_period_end BIGINT,
    cancel_at_period_end BOOLEAN DEFAULT FALSE,
    created BIGINT NOT NULL,
    PRIMARY KEY (tenant_id, processor_id)
);

CREATE TABLE IF NOT EXISTS invoices (
    tenant_id BIGINT NOT NULL,
    sub_account_id BIGINT,
    processor_id VARCHAR NOT NULL,
    customer_ref VARCHAR,
    number VARCHAR,
    status VARCHAR NOT NULL,
    amount_due DECIMAL(12, 2) DEFAULT 0,
    amount_paid DECIMAL(12, 2) DEFAULT 0,
    currency VARCHAR,
    due_date BIGINT,
    created BIGINT NOT NULL,
    PRIMARY KEY (tenant_id, processor_id)
);

-- Payment attempts (processor "payment intents")
CREATE TABLE IF NOT EXISTS payment_attempts (
    tenant_id BIGINT NOT NULL,
    sub_account_id BIGINT,
    processor_id VARCHAR NOT NULL,
    customer_ref VARCHAR,
    amount DECIMAL(12, 2) NOT NULL,
    currency VARCHAR NOT NULL,
    status VARCHAR NOT NULL,
    payment_method_type VARCHAR,
    description VARCHAR,
    created BIGINT NOT NULL,
    PRIMARY KEY (tenant_id, processor_id)
);

-- Charges; payment_attempt_ref links a charge to the attempt that produced it
CREATE TABLE IF NOT EXISTS charges (
    tenant_id BIGINT NOT NULL,
    sub_account_id BIGINT,
    processor_id VARCHAR NOT NULL,
    customer_ref VARCHAR,
    payment_attempt_ref VARCHAR,
    amount DECIMAL(12, 2) NOT NULL,
    currency VARCHAR NOT NULL,
    status VARCHAR NOT NULL,
    description VARCHAR,
    created BIGINT NOT NULL,
    PRIMARY KEY (tenant_id, processor_id)
);

CREATE TABLE IF NOT EXISTS refunds (
    tenant_id BIGINT NOT NULL,
    sub_account_id BIGINT,
    processor_id VARCHAR NOT NULL,
    charge_ref VARCHAR,
    payment_attempt_ref VARCHAR,
    amount DECIMAL(12, 2) NOT NULL,
    currency VARCHAR NOT NULL,
    status VARCHAR NOT NULL,
    reason VARCHAR,
    created BIGINT NOT NULL,
    PRIMARY KEY (tenant_id, processor_id)
);

CREATE TABLE IF NOT EXISTS payouts (
    tenant_id BIGINT NOT NULL,
    sub_account_id BIGINT,
    processor_id VARCHAR NOT NULL,
    amount DECIMAL(12, 2) NOT NULL,
    currency VARCHAR NOT NULL,
    status VARCHAR NOT NULL,
    method VARCHAR,
    arrival_date BIGINT,
    created BIGINT NOT NULL,
    PRIMARY KEY (tenant_id, processor_id)
);

CREATE TABLE IF NOT EXISTS coupons (
    tenant_id BIGINT NOT NULL,
    sub_account_id BIGINT,
    processor_id VARCHAR NOT NULL,
    name VARCHAR,
    percent_off DECIMAL(5, 2),
    amount_off DECIMAL(12, 2),
    currency VARCHAR,
    duration VARCHAR,
    valid BOOLEAN DEFAULT TRUE,
    times_redeemed INTEGER DEFAULT 0,
    created BIGINT NOT NULL,
    PRIMARY KEY (tenant_id, processor_id)
);

CREATE TABLE IF NOT EXISTS disputes (
    tenant_id BIGINT NOT NULL,
    sub_account_id BIGINT,
    processor_id VARCHAR NOT NULL,
    charge_ref VARCHAR,
    amount DECIMAL(12, 2) NOT NULL,
    currency VARCHAR NOT NULL,
    status VARCHAR NOT NULL,
    reason VARCHAR,
    created BIGINT NOT NULL,
    PRIMARY KEY (tenant_id, processor_id)
);

CREATE INDEX IF NOT EXISTS idx_payment_attempts_created ON payment_attempts(tenant_id, created);
CREATE INDEX IF NOT EXISTS idx_charges_created ON charges(tenant_id, created);
CREATE INDEX IF NOT EXISTS idx_customers_created ON customers(tenant_id, created);
"""

# One logical transaction stream: every payment attempt, plus charges that
# are not the settlement of a same-tenant payment attempt.
TRANSACTIONS_VIEW_SQL = """
CREATE OR REPLACE VIEW v_transactions AS
SELECT
    'payment_intent' AS source,
    p.tenant_id, p.sub_account_id, p.processor_id, p.customer_ref,
    p.amount, p.currency, p.status, p.created
FROM payment_attempts p
UNION ALL
SELECT
    'charge' AS source,
    c.tenant_id, c.sub_account_id, c.processor_id, c.customer_ref,
    c.amount, c.currency, c.status, c.created
FROM charges c
WHERE c.payment_attempt_ref IS NULL
   OR NOT EXISTS (
        SELECT 1 FROM payment_attempts p
        WHERE p.tenant_id = c.tenant_id
          AND p.processor_id = c.payment_attempt_ref
   )
"""


class BaseRepository:
    """
    Base repository with DuckDB connection management.

    Reads run on a thread pool, each on its own cursor, so independent
    queries issued with asyncio.gather execute concurrently.

    Usage:
        class RefundsMixin:
            async def count_refunds(self, tenant_id: int) -> int:
                row = await self._fetch_one(
                    "SELECT COUNT(*) FROM refunds WHERE tenant_id = ?", [tenant_id]
                )
                return row[0]
    """

    def __init__(
        self,
        db_path: Union[str, Path] = None,
        read_workers: int = None,
    ):
        self.db_path = str(db_path or config.database.path)
        self.read_workers = read_workers or config.database.read_workers
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open the database, create the schema, and start the read pool."""
        async with self._lock:
            if self._connection is not None:
                return

            if self.db_path != MEMORY_DB:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            self._connection = duckdb.connect(self.db_path)
            self._init_schema()
            self._executor = ThreadPoolExecutor(
                max_workers=self.read_workers,
                thread_name_prefix="duckdb-read",
            )
            logger.info(f"DuckDB connected: {self.db_path}")

    async def close(self) -> None:
        """Close the read pool and the database connection."""
        async with self._lock:
            if self._executor:
                self._executor.shutdown(wait=True)
                self._executor = None

            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info("DuckDB connection closed")

    def _init_schema(self) -> None:
        """Create mirror tables and the unified transaction view if missing."""
        self._connection.execute(SCHEMA_SQL)
        self._connection.execute(TRANSACTIONS_VIEW_SQL)

    @asynccontextmanager
    async def connection(self):
        """Get the database connection, connecting on first use."""
        if self._connection is None:
            await self.connect()
        yield self._connection

    # ─── Query Execution ─────────────────────────────────────────────────────

    async def _run_read(self, query: str, params: Optional[list], fetch: str) -> Any:
        async with self.connection() as conn:
            # Cursors duplicate the connection and may be used from any thread
            cursor = conn.cursor()
            loop = asyncio.get_running_loop()

            def _run():
                try:
                    result = cursor.execute(query, params or [])
                    return result.fetchone() if fetch == "one" else result.fetchall()
                finally:
                    cursor.close()

            with Timer("duckdb_read", logger, warn_threshold_ms=2000):
                return await loop.run_in_executor(self._executor, _run)

    async def _fetch_one(self, query: str, params: list = None) -> Optional[tuple]:
        """Execute query and fetch one row (offloaded to the read pool)."""
        return await self._run_read(query, params, "one")

    async def _fetch_all(self, query: str, params: list = None) -> List[tuple]:
        """Execute query and fetch all rows (offloaded to the read pool)."""
        return await self._run_read(query, params, "all")
