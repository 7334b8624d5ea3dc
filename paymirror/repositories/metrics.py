"""
Metrics aggregator: dashboard and financial summary over the transaction stream.

Revenue and counts read `v_transactions` (payment attempts plus charges that do
not settle a same-tenant payment attempt), so a charge and the attempt it
settles are never counted twice. Sub-queries are independent and issued
concurrently; any failure fails the whole aggregation.
"""
import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from paymirror.charts import build_series
from paymirror.config import config
from paymirror.exceptions import MetricsAggregationError
from paymirror.filters import DateRange, Predicate, combine
from paymirror.models import (
    UNKNOWN_CUSTOMER,
    Charge,
    DashboardMetrics,
    FinancialSummary,
    PaymentAttempt,
    PeriodKind,
    TenantScope,
    Transaction,
    TransactionStatus,
    calculate_growth,
    merge_recent,
)
from paymirror.observability import Timer, get_logger, log_context
from paymirror.periods import ChartSpec, TimeWindow, resolve_period

logger = get_logger(__name__)

SUCCEEDED = TransactionStatus.SUCCEEDED.value
FAILED = TransactionStatus.FAILED.value

# Half-open epoch bounds; None leaves that side open
Bounds = Tuple[Optional[int], Optional[int]]

UNLINKED_CHARGE_SQL = """(ch.payment_attempt_ref IS NULL OR NOT EXISTS (
    SELECT 1 FROM payment_attempts pa
    WHERE pa.tenant_id = ch.tenant_id AND pa.processor_id = ch.payment_attempt_ref
))"""


def _window_bounds(window: TimeWindow) -> Bounds:
    return window.start_epoch, window.end_epoch


def _range_bounds(date_range: Optional[DateRange]) -> Bounds:
    """Closed DateRange → half-open epoch bounds."""
    if date_range is None:
        return None, None
    end = date_range.end_epoch + 1 if date_range.end is not None else None
    return date_range.start_epoch, end


def _scoped_where(
    scope: TenantScope,
    alias: str,
    bounds: Bounds = (None, None),
    *extra: Predicate,
) -> Tuple[str, list]:
    """Tenant (then sub-account) predicate, the created-window, and extras."""
    predicates = [Predicate(f"{alias}.tenant_id = ?", (scope.tenant_id,))]
    if scope.sub_account_id is not None:
        predicates.append(Predicate(f"{alias}.sub_account_id = ?", (scope.sub_account_id,)))
    start, end = bounds
    if start is not None:
        predicates.append(Predicate(f"{alias}.created >= ?", (start,)))
    if end is not None:
        predicates.append(Predicate(f"{alias}.created < ?", (end,)))
    predicates.extend(extra)
    return combine(predicates)


class MetricsMixin:

    # ─── Sub-queries ─────────────────────────────────────────────────────────

    async def _sum_revenue(self, scope: TenantScope, bounds: Bounds) -> float:
        """Sum of succeeded transaction amounts."""
        where_sql, params = _scoped_where(
            scope, "t", bounds, Predicate("t.status = ?", (SUCCEEDED,))
        )
        row = await self._fetch_one(f"""
            SELECT COALESCE(SUM(t.amount), 0)
            FROM v_transactions t
            WHERE {where_sql}
        """, params)
        return float(row[0] or 0)

    async def _sum_refunds(self, scope: TenantScope, bounds: Bounds) -> float:
        where_sql, params = _scoped_where(
            scope, "r", bounds, Predicate("r.status = ?", (SUCCEEDED,))
        )
        row = await self._fetch_one(f"""
            SELECT COALESCE(SUM(r.amount), 0)
            FROM refunds r
            WHERE {where_sql}
        """, params)
        return float(row[0] or 0)

    async def _count_customers(self, scope: TenantScope, bounds: Bounds) -> int:
        where_sql, params = _scoped_where(scope, "c", bounds)
        row = await self._fetch_one(f"""
            SELECT COUNT(*)
            FROM customers c
            WHERE {where_sql}
        """, params)
        return int(row[0] or 0)

    async def _count_transactions(self, scope: TenantScope, bounds: Bounds) -> Tuple[int, int, int]:
        """(total, succeeded, failed) over the transaction stream."""
        where_sql, params = _scoped_where(scope, "t", bounds)
        row = await self._fetch_one(f"""
            SELECT
                COUNT(*),
                COUNT(*) FILTER (WHERE t.status = ?),
                COUNT(*) FILTER (WHERE t.status = ?)
            FROM v_transactions t
            WHERE {where_sql}
        """, [SUCCEEDED, FAILED, *params])
        return int(row[0] or 0), int(row[1] or 0), int(row[2] or 0)

    async def _revenue_buckets(self, scope: TenantScope, chart: ChartSpec) -> Dict[int, float]:
        """
        Succeeded revenue grouped into fixed-width buckets from the window start.

        Bucketing on epoch arithmetic keeps the result independent of the
        database session time zone.
        """
        where_sql, params = _scoped_where(
            scope, "t", _window_bounds(chart.window),
            Predicate("t.status = ?", (SUCCEEDED,)),
        )
        rows = await self._fetch_all(f"""
            SELECT
                (t.created - ?) // ? AS bucket,
                SUM(t.amount) AS revenue
            FROM v_transactions t
            WHERE {where_sql}
            GROUP BY bucket
            ORDER BY bucket
        """, [chart.window.start_epoch, chart.bucket_seconds, *params])
        return {int(row[0]): float(row[1] or 0) for row in rows}

    async def _recent_payment_attempts(
        self, scope: TenantScope, bounds: Bounds, limit: int
    ) -> List[Transaction]:
        where_sql, params = _scoped_where(scope, "p", bounds)
        rows = await self._fetch_all(f"""
            SELECT
                p.processor_id, p.amount, p.currency, p.status, p.created,
                COALESCE(cu.name, '{UNKNOWN_CUSTOMER}')
            FROM payment_attempts p
            LEFT JOIN customers cu
                ON cu.tenant_id = p.tenant_id AND cu.processor_id = p.customer_ref
            WHERE {where_sql}
            ORDER BY p.created DESC, p.processor_id DESC
            LIMIT ?
        """, [*params, limit])
        return [PaymentAttempt.from_row(row) for row in rows]

    async def _recent_charges(
        self, scope: TenantScope, bounds: Bounds, limit: int
    ) -> List[Transaction]:
        where_sql, params = _scoped_where(scope, "ch", bounds, Predicate(UNLINKED_CHARGE_SQL))
        rows = await self._fetch_all(f"""
            SELECT
                ch.processor_id, ch.amount, ch.currency, ch.status, ch.created,
                COALESCE(cu.name, '{UNKNOWN_CUSTOMER}')
            FROM charges ch
            LEFT JOIN customers cu
                ON cu.tenant_id = ch.tenant_id AND cu.processor_id = ch.customer_ref
            WHERE {where_sql}
            ORDER BY ch.created DESC, ch.processor_id DESC
            LIMIT ?
        """, [*params, limit])
        return [Charge.from_row(row) for row in rows]

    async def _recent_transactions(
        self, scope: TenantScope, bounds: Bounds, limit: int
    ) -> List[Transaction]:
        attempts, charges = await asyncio.gather(
            self._recent_payment_attempts(scope, bounds, limit),
            self._recent_charges(scope, bounds, limit),
        )
        return merge_recent(attempts, charges, limit=limit)

    # ─── Public API ──────────────────────────────────────────────────────────

    async def get_dashboard_metrics(
        self,
        scope: TenantScope,
        kind=PeriodKind.YEAR,
        now: Optional[datetime] = None,
    ) -> DashboardMetrics:
        """
        Aggregate dashboard metrics for one tenant, optional sub-account, and period.

        Growth percentages compare the current window with the window of equal
        length just before it. For a week that baseline is the previous 7 days,
        while the week's previous chart series spans the 28 days before the
        current window, so the two never describe the same span.

        Args:
            scope: Tenant scope
            kind: today, week, month or year (anything else resolves as year)
            now: Reference time (default: current UTC time)

        Returns:
            DashboardMetrics

        Raises:
            MetricsAggregationError: If any sub-query fails
        """
        period = resolve_period(kind, now)
        current = _window_bounds(period.current)
        previous = _window_bounds(period.previous)
        limit = config.query.recent_transactions_limit

        with log_context(tenant_id=scope.tenant_id, period=period.kind.value):
            try:
                with Timer("dashboard_metrics", logger):
                    (
                        revenue_current,
                        revenue_previous,
                        customers_current,
                        customers_previous,
                        counts,
                        chart_current,
                        chart_previous,
                        recent,
                    ) = await asyncio.gather(
                        self._sum_revenue(scope, current),
                        self._sum_revenue(scope, previous),
                        self._count_customers(scope, current),
                        self._count_customers(scope, previous),
                        self._count_transactions(scope, current),
                        self._revenue_buckets(scope, period.current_chart),
                        self._revenue_buckets(scope, period.previous_chart),
                        self._recent_transactions(scope, current, limit),
                    )
            except Exception as e:
                logger.error(f"Dashboard aggregation failed: {e}", exc_info=True)
                raise MetricsAggregationError(
                    "Failed to aggregate dashboard metrics",
                    str(e),
                    period=period.kind.value,
                ) from e

        total_payments, successful_payments, failed_payments = counts
        avg_order_value = revenue_current / successful_payments if successful_payments else 0.0

        return DashboardMetrics(
            period=period.kind,
            total_revenue=revenue_current,
            revenue_growth=calculate_growth(revenue_current, revenue_previous),
            total_customers=customers_current,
            customer_growth=calculate_growth(customers_current, customers_previous),
            total_payments=total_payments,
            successful_payments=successful_payments,
            failed_payments=failed_payments,
            avg_order_value=avg_order_value,
            revenue_chart_current=build_series(period.current_chart, chart_current),
            revenue_chart_previous=build_series(period.previous_chart, chart_previous),
            recent_transactions=recent,
        )

    async def get_financial_summary(
        self,
        scope: TenantScope,
        date_range: Optional[DateRange] = None,
        label: str = "custom",
    ) -> FinancialSummary:
        """
        Revenue, refunds, customers and payment counts over an arbitrary range.

        Args:
            scope: Tenant scope
            date_range: Closed UTC range; None means all time
            label: Period label used in logs

        Raises:
            MetricsAggregationError: If any sub-query fails
        """
        bounds = _range_bounds(date_range)
        limit = config.query.recent_transactions_limit

        with log_context(tenant_id=scope.tenant_id, period=label):
            try:
                with Timer("financial_summary", logger):
                    revenue, refunded, total_customers, new_customers, counts, recent = (
                        await asyncio.gather(
                            self._sum_revenue(scope, bounds),
                            self._sum_refunds(scope, bounds),
                            self._count_customers(scope, (None, None)),
                            self._count_customers(scope, bounds),
                            self._count_transactions(scope, bounds),
                            self._recent_transactions(scope, bounds, limit),
                        )
                    )
            except Exception as e:
                logger.error(f"Financial summary failed: {e}", exc_info=True)
                raise MetricsAggregationError(
                    "Failed to aggregate financial summary",
                    str(e),
                    period=label,
                ) from e

        total_payments, successful_payments, failed_payments = counts
        return FinancialSummary(
            total_revenue=revenue,
            net_revenue=revenue - refunded,
            total_customers=total_customers,
            new_customers=new_customers,
            total_payments=total_payments,
            successful_payments=successful_payments,
            failed_payments=failed_payments,
            avg_order_value=revenue / successful_payments if successful_payments else 0.0,
            recent_transactions=recent,
        )
