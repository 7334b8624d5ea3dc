"""
Pytest configuration and shared fixtures.
"""
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
import pytest_asyncio

from paymirror.cache import MetricsCache
from paymirror.store import AnalyticsService, MirrorStore

# Frozen reference time: Friday 2024-03-15 12:00 UTC (leap year)
NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def epoch(moment: datetime) -> int:
    """Aware datetime → epoch seconds."""
    return int(moment.timestamp())


def days_ago(days: float, hours: float = 0) -> int:
    """Epoch seconds `days` (and `hours`) before NOW."""
    return epoch(NOW - timedelta(days=days, hours=hours))


class Seeder:
    """Writes mirror rows directly, the way the sync pipelines would."""

    def __init__(self, conn):
        self.conn = conn
        self._ids = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids):05d}"

    def insert(self, table: str, **values: Any) -> None:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        self.conn.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            list(values.values()),
        )

    def customer(
        self,
        name: Optional[str] = "Customer",
        email: Optional[str] = None,
        tenant_id: int = 1,
        sub_account_id: Optional[int] = None,
        created: Optional[int] = None,
        processor_id: Optional[str] = None,
        **extra: Any,
    ) -> str:
        processor_id = processor_id or self._next_id("cus")
        self.insert(
            "customers",
            tenant_id=tenant_id,
            sub_account_id=sub_account_id,
            processor_id=processor_id,
            name=name,
            email=email,
            created=created if created is not None else epoch(NOW),
            **extra,
        )
        return processor_id

    def payment(
        self,
        amount: float,
        status: str = "succeeded",
        created: Optional[int] = None,
        tenant_id: int = 1,
        sub_account_id: Optional[int] = None,
        customer_ref: Optional[str] = None,
        currency: str = "usd",
        processor_id: Optional[str] = None,
        **extra: Any,
    ) -> str:
        processor_id = processor_id or self._next_id("pi")
        self.insert(
            "payment_attempts",
            tenant_id=tenant_id,
            sub_account_id=sub_account_id,
            processor_id=processor_id,
            customer_ref=customer_ref,
            amount=amount,
            currency=currency,
            status=status,
            created=created if created is not None else epoch(NOW),
            **extra,
        )
        return processor_id

    def charge(
        self,
        amount: float,
        status: str = "succeeded",
        created: Optional[int] = None,
        tenant_id: int = 1,
        sub_account_id: Optional[int] = None,
        customer_ref: Optional[str] = None,
        payment_attempt_ref: Optional[str] = None,
        currency: str = "usd",
        processor_id: Optional[str] = None,
    ) -> str:
        processor_id = processor_id or self._next_id("ch")
        self.insert(
            "charges",
            tenant_id=tenant_id,
            sub_account_id=sub_account_id,
            processor_id=processor_id,
            customer_ref=customer_ref,
            payment_attempt_ref=payment_attempt_ref,
            amount=amount,
            currency=currency,
            status=status,
            created=created if created is not None else epoch(NOW),
        )
        return processor_id

    def refund(
        self,
        amount: float,
        status: str = "succeeded",
        created: Optional[int] = None,
        tenant_id: int = 1,
        sub_account_id: Optional[int] = None,
        charge_ref: Optional[str] = None,
    ) -> str:
        processor_id = self._next_id("re")
        self.insert(
            "refunds",
            tenant_id=tenant_id,
            sub_account_id=sub_account_id,
            processor_id=processor_id,
            charge_ref=charge_ref,
            amount=amount,
            currency="usd",
            status=status,
            created=created if created is not None else epoch(NOW),
        )
        return processor_id


@pytest.fixture
def now() -> datetime:
    """Frozen reference time."""
    return NOW


@pytest_asyncio.fixture
async def store():
    """Connected in-memory mirror store."""
    mirror = MirrorStore(":memory:", read_workers=4)
    await mirror.connect()
    yield mirror
    await mirror.close()


@pytest.fixture
def seed(store) -> Seeder:
    """Row seeder bound to the store's connection."""
    return Seeder(store._connection)


@pytest.fixture
def service(store) -> AnalyticsService:
    """Analytics service without a cache client."""
    return AnalyticsService(store, MetricsCache(None))


@pytest.fixture
def ago():
    """Epoch seconds relative to the frozen reference time."""
    return days_ago


@pytest.fixture
def at():
    """Epoch seconds of an explicit UTC moment: at(2024, 3, 2, 10)."""
    def _at(*args: int) -> int:
        return epoch(datetime(*args, tzinfo=timezone.utc))
    return _at
