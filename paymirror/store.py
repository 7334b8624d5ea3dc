"""
Mirror store and analytics service.

Query methods are organized into repository mixins:
- ListingMixin: filtered, sorted, paginated entity listings
- MetricsMixin: dashboard metrics and financial summaries

AnalyticsService is the surface the HTTP layer calls: it resolves tenant scope,
routes metrics through the cache façade, and returns JSON-ready dicts.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

from paymirror.cache import MetricsCache, build_cache_client
from paymirror.config import config
from paymirror.filters import explicit_range, shorthand_range
from paymirror.models import ListParams, PeriodKind, TenantScope
from paymirror.observability import get_logger
from paymirror.repositories import BaseRepository, ListingMixin, MetricsMixin

logger = get_logger(__name__)


class MirrorStore(ListingMixin, MetricsMixin, BaseRepository):
    """
    Async-compatible, read-only DuckDB store over the payment mirror.

    Usage:
        store = MirrorStore(":memory:")
        await store.connect()
        page = await store.list_entities(TenantScope(1), "customers")
    """


class AnalyticsService:
    """Tenant-scoped listing, dashboard and summary operations."""

    def __init__(self, store: MirrorStore, cache: Optional[MetricsCache] = None):
        self.store = store
        self.cache = cache or MetricsCache(None)

    async def list(
        self,
        tenant_id: Any,
        entity: str,
        params: Union[ListParams, Mapping[str, Any], None] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        List one page of an entity for a tenant.

        Returns:
            {data, totalCount, totalPages, currentPage, pageSize}

        Raises:
            MissingTenantError: If tenant_id is missing or invalid
            ValidationError: If the entity is unknown
        """
        if not isinstance(params, ListParams):
            params = ListParams.from_mapping(params)
        scope = TenantScope.resolve(tenant_id, params.account_id)
        page = await self.store.list_entities(scope, entity, params, now)
        return page.to_dict()

    async def dashboard(
        self,
        tenant_id: Any,
        account_id: Any = None,
        period_kind: Any = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Dashboard metrics, served from cache when available.

        Raises:
            MissingTenantError: If tenant_id is missing or invalid
            MetricsAggregationError: If aggregation fails (never cached)
        """
        scope = TenantScope.resolve(tenant_id, account_id)
        kind = PeriodKind.parse(
            period_kind, default=PeriodKind.parse(config.query.default_period_kind)
        )

        async def compute() -> Dict[str, Any]:
            metrics = await self.store.get_dashboard_metrics(scope, kind, now)
            return metrics.to_dict()

        return await self.cache.get_or_compute(
            scope.tenant_id, scope.sub_account_id, kind.value, compute
        )

    async def financial_summary(
        self,
        tenant_id: Any,
        account_id: Any = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        period: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Financial summary over explicit dates, a 7d/30d/90d/1y shorthand, or all time.

        Explicit dates take precedence over the shorthand.
        """
        scope = TenantScope.resolve(tenant_id, account_id)

        date_range = explicit_range(start_date, end_date)
        if date_range is not None:
            label = f"summary:{start_date or ''}_{end_date or ''}"
        else:
            date_range = shorthand_range(period, now or datetime.now(timezone.utc))
            label = f"summary:{period}" if date_range is not None else "summary:all"

        async def compute() -> Dict[str, Any]:
            summary = await self.store.get_financial_summary(scope, date_range, label)
            return summary.to_dict()

        return await self.cache.get_or_compute(
            scope.tenant_id, scope.sub_account_id, label, compute
        )

    async def invalidate(self, tenant_id: Any) -> int:
        """Drop cached analytics of a tenant after its rows changed."""
        scope = TenantScope.resolve(tenant_id)
        return await self.cache.invalidate(scope.tenant_id)


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_store_instance: Optional[MirrorStore] = None
_service_instance: Optional[AnalyticsService] = None
_store_lock = asyncio.Lock()


async def get_store() -> MirrorStore:
    """Get singleton mirror store instance (coroutine-safe)."""
    global _store_instance
    async with _store_lock:
        if _store_instance is None:
            _store_instance = MirrorStore()
            await _store_instance.connect()
    return _store_instance


async def get_service() -> AnalyticsService:
    """Get the singleton service; the cache client is resolved once here."""
    global _service_instance
    store = await get_store()
    if _service_instance is None:
        _service_instance = AnalyticsService(store, MetricsCache(build_cache_client()))
    return _service_instance


async def close_store() -> None:
    """Close singleton store, service and cache client."""
    global _store_instance, _service_instance
    if _service_instance and _service_instance.cache.client is not None:
        await _service_instance.cache.client.close()
    _service_instance = None
    if _store_instance:
        await _store_instance.close()
        _store_instance = None
