"""
Domain models for the payment mirror.

Provides type-safe dataclasses for tenant scope, list parameters, the two raw
transaction shapes, and the analytics payloads. These models serve as the
single source of truth for data structures shared by the listing and metrics
repositories.
"""
import itertools
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional

from paymirror.validators import (
    optional_int,
    validate_sub_account_id,
    validate_tenant_id,
)

UNKNOWN_CUSTOMER = "Unknown Customer"


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class PeriodKind(str, Enum):
    """Dashboard period kinds."""
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @classmethod
    def parse(cls, value: Any, default: "PeriodKind" = None) -> "PeriodKind":
        """Parse a period kind, falling back to `default` (year) for unknown values."""
        fallback = default or cls.YEAR
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return fallback
        try:
            return cls(value.strip().lower())
        except ValueError:
            return fallback


class Granularity(str, Enum):
    """Bucket size of a revenue series."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    TOTAL = "total"

    @property
    def bucket_seconds(self) -> int:
        """Width of the SQL grouping bucket; week/month/total fold daily buckets."""
        return 3600 if self is Granularity.HOUR else 86400


class TransactionStatus(str, Enum):
    """Processor transaction statuses the engine cares about."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"
    CANCELED = "canceled"


# ═══════════════════════════════════════════════════════════════════════════════
# SCOPE AND PARAMETERS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TenantScope:
    """Tenant first, optionally narrowed to one sub-account."""
    tenant_id: int
    sub_account_id: Optional[int] = None

    @classmethod
    def resolve(cls, tenant_id: Any, sub_account_id: Any = None) -> "TenantScope":
        """Validate ids; a missing tenant raises MissingTenantError."""
        return cls(
            tenant_id=validate_tenant_id(tenant_id),
            sub_account_id=validate_sub_account_id(sub_account_id),
        )


def _parse_filter(value: Any) -> Dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, str) and value.strip():
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


@dataclass
class ListParams:
    """Raw list parameters as received from the HTTP layer (unvalidated)."""
    page: Any = None
    page_size: Any = None
    query: Optional[str] = None
    sort: Optional[str] = None
    filter: Dict[str, Any] = field(default_factory=dict)
    account_id: Optional[int] = None
    year: Optional[int] = None
    month: Optional[int] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    period: Optional[str] = None

    @classmethod
    def from_mapping(cls, params: Optional[Mapping[str, Any]]) -> "ListParams":
        """Build from a query mapping; accepts camelCase and snake_case keys."""
        params = params or {}

        def pick(*keys):
            for key in keys:
                if params.get(key) not in (None, ""):
                    return params[key]
            return None

        query = pick("query", "q")
        return cls(
            page=pick("page"),
            page_size=pick("pageSize", "page_size"),
            query=str(query).strip() if query is not None else None,
            sort=pick("sort"),
            filter=_parse_filter(pick("filter")),
            account_id=optional_int(pick("accountId", "account_id"), "account_id"),
            year=optional_int(pick("year"), "year"),
            month=optional_int(pick("month"), "month"),
            start_date=pick("startDate", "start_date"),
            end_date=pick("endDate", "end_date"),
            period=pick("period"),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# TRANSACTIONS (tagged union over the two raw sources)
# ═══════════════════════════════════════════════════════════════════════════════

def epoch_to_iso(created: Optional[int]) -> Optional[str]:
    """Epoch seconds → ISO-8601 UTC with millisecond precision."""
    if created is None:
        return None
    moment = datetime.fromtimestamp(int(created), tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class Transaction:
    """Shared projection of a charge or a payment attempt."""
    id: str
    amount: float
    currency: str
    status: str
    created: int
    customer_name: str = UNKNOWN_CUSTOMER

    kind: ClassVar[str] = "transaction"

    @classmethod
    def from_row(cls, row: tuple) -> "Transaction":
        """Row layout: (id, amount, currency, status, created, customer_name)."""
        processor_id, amount, currency, status, created, customer_name = row
        return cls(
            id=processor_id,
            amount=float(amount or 0),
            currency=currency,
            status=status or "unknown",
            created=int(created or 0),
            customer_name=customer_name or UNKNOWN_CUSTOMER,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "customerName": self.customer_name,
            "amount": round(self.amount, 2),
            "currency": self.currency,
            "dateTime": epoch_to_iso(self.created),
            "status": self.status,
            "type": self.kind,
        }


@dataclass
class Charge(Transaction):
    kind: ClassVar[str] = "charge"


@dataclass
class PaymentAttempt(Transaction):
    kind: ClassVar[str] = "payment_intent"


def merge_recent(*sources: Iterable[Transaction], limit: int = 10) -> List[Transaction]:
    """Merge transaction sources newest-first and keep the first `limit`."""
    merged = sorted(
        itertools.chain.from_iterable(sources),
        key=lambda t: t.created,
        reverse=True,
    )
    return merged[:limit]


# ═══════════════════════════════════════════════════════════════════════════════
# ANALYTICS PAYLOADS
# ═══════════════════════════════════════════════════════════════════════════════

def calculate_growth(current: float, previous: float) -> float:
    """Percentage change; a zero baseline yields 100 (any growth) or 0."""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


@dataclass
class ChartPoint:
    label: str
    revenue: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "revenue": round(self.revenue, 2)}


@dataclass
class DashboardMetrics:
    """Everything the dashboard shows for one tenant, scope, and period."""
    period: PeriodKind
    total_revenue: float
    revenue_growth: float
    total_customers: int
    customer_growth: float
    total_payments: int
    successful_payments: int
    failed_payments: int
    avg_order_value: float
    revenue_chart_current: List[ChartPoint]
    revenue_chart_previous: List[ChartPoint]
    recent_transactions: List[Transaction]

    @property
    def monthly_growth(self) -> float:
        """Kept for dashboard clients: mirrors revenue growth."""
        return self.revenue_growth

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRevenue": {
                "amount": round(self.total_revenue, 2),
                "growth": round(self.revenue_growth, 2),
            },
            "totalCustomers": {
                "count": self.total_customers,
                "growth": round(self.customer_growth, 2),
            },
            "monthlyGrowth": round(self.monthly_growth, 2),
            "totalPayments": self.total_payments,
            "successfulPayments": self.successful_payments,
            "failedPayments": self.failed_payments,
            "avgOrderValue": round(self.avg_order_value, 2),
            "revenueChart": {
                "current": [p.to_dict() for p in self.revenue_chart_current],
                "previous": [p.to_dict() for p in self.revenue_chart_previous],
            },
            "recentTransactions": [t.to_dict() for t in self.recent_transactions],
            "filterType": self.period.value,
        }


@dataclass
class FinancialSummary:
    """Revenue/customer/payment summary over an arbitrary date range."""
    total_revenue: float
    net_revenue: float
    total_customers: int
    new_customers: int
    total_payments: int
    successful_payments: int
    failed_payments: int
    avg_order_value: float
    recent_transactions: List[Transaction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRevenue": round(self.total_revenue, 2),
            "netRevenue": round(self.net_revenue, 2),
            "totalCustomers": self.total_customers,
            "newCustomers": self.new_customers,
            "totalPayments": self.total_payments,
            "successfulPayments": self.successful_payments,
            "failedPayments": self.failed_payments,
            "avgOrderValue": round(self.avg_order_value, 2),
            "recentTransactions": [t.to_dict() for t in self.recent_transactions],
        }
