"""
Query and analytics engine over a local mirror of payment-processor data.

- store: MirrorStore (DuckDB) and AnalyticsService (list, dashboard, financial_summary)
- cache: best-effort Redis memoization of metrics
- filters, sorting, pagination, periods: query building blocks
- exceptions, validators, config, observability: shared infrastructure
"""

# Import in dependency order
from paymirror.config import config

from paymirror.exceptions import (
    PayMirrorError,
    MetricsAggregationError,
    CacheError,
    ValidationError,
    MissingTenantError,
)

from paymirror.models import (
    PeriodKind,
    TenantScope,
    ListParams,
    Charge,
    PaymentAttempt,
    DashboardMetrics,
    FinancialSummary,
    calculate_growth,
)

from paymirror.cache import MetricsCache, RedisCache, build_cache_client

from paymirror.store import (
    AnalyticsService,
    MirrorStore,
    get_store,
    get_service,
    close_store,
)

__all__ = [
    # Config
    "config",
    # Exceptions
    "PayMirrorError",
    "MetricsAggregationError",
    "CacheError",
    "ValidationError",
    "MissingTenantError",
    # Models
    "PeriodKind",
    "TenantScope",
    "ListParams",
    "Charge",
    "PaymentAttempt",
    "DashboardMetrics",
    "FinancialSummary",
    "calculate_growth",
    # Cache
    "MetricsCache",
    "RedisCache",
    "build_cache_client",
    # Store
    "AnalyticsService",
    "MirrorStore",
    "get_store",
    "get_service",
    "close_store",
]
