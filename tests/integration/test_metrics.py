"""
Integration tests for dashboard metrics and financial summaries.
"""
import pytest
from unittest.mock import AsyncMock, patch

from paymirror.exceptions import MetricsAggregationError, MissingTenantError
from paymirror.filters import explicit_range
from paymirror.models import PeriodKind, TenantScope


class TestMonthDashboard:
    """Month period at 2024-03-15 12:00 UTC."""

    @pytest.mark.asyncio
    async def test_totals(self, store, seed, at, now):
        """10/20/30 succeeded plus one failed → 60 revenue over 3 successful."""
        seed.payment(10, created=at(2024, 3, 2, 10))
        seed.payment(20, created=at(2024, 3, 5, 10))
        seed.payment(30, created=at(2024, 3, 10, 10))
        seed.payment(5, status="failed", created=at(2024, 3, 11, 10))

        metrics = await store.get_dashboard_metrics(TenantScope(1), PeriodKind.MONTH, now)

        assert metrics.total_revenue == 60
        assert metrics.successful_payments == 3
        assert metrics.failed_payments == 1
        assert metrics.total_payments == 4
        assert metrics.avg_order_value == 20
        assert len(metrics.revenue_chart_current) == 31
        assert len(metrics.revenue_chart_previous) == 29

    @pytest.mark.asyncio
    async def test_daily_buckets(self, store, seed, at, now):
        seed.payment(10, created=at(2024, 3, 2, 10))
        seed.payment(15, created=at(2024, 3, 2, 23, 59, 59))
        seed.payment(7, created=at(2024, 2, 29, 8))

        metrics = await store.get_dashboard_metrics(TenantScope(1), "month", now)

        assert metrics.revenue_chart_current[1].label == "Day 2"
        assert metrics.revenue_chart_current[1].revenue == 25
        assert metrics.revenue_chart_previous[28].revenue == 7

    @pytest.mark.asyncio
    async def test_revenue_growth(self, store, seed, at, now):
        seed.payment(60, created=at(2024, 3, 2, 10))
        seed.payment(30, created=at(2024, 2, 20, 10))

        metrics = await store.get_dashboard_metrics(TenantScope(1), "month", now)

        assert metrics.revenue_growth == 100
        assert metrics.to_dict()["monthlyGrowth"] == 100

    @pytest.mark.asyncio
    async def test_growth_from_zero(self, store, seed, at, now):
        seed.payment(60, created=at(2024, 3, 2, 10))
        metrics = await store.get_dashboard_metrics(TenantScope(1), "month", now)
        assert metrics.revenue_growth == 100

    @pytest.mark.asyncio
    async def test_customer_growth(self, store, seed, at, now):
        seed.customer(created=at(2024, 3, 1, 0))
        seed.customer(created=at(2024, 3, 14, 9))
        seed.customer(created=at(2024, 2, 29, 23, 59, 59))

        metrics = await store.get_dashboard_metrics(TenantScope(1), "month", now)

        assert metrics.total_customers == 2
        assert metrics.customer_growth == 100

    @pytest.mark.asyncio
    async def test_window_end_exclusive(self, store, seed, at, now):
        """A row at the first second of next month is not in this month."""
        seed.payment(10, created=at(2024, 4, 1, 0, 0, 0))
        metrics = await store.get_dashboard_metrics(TenantScope(1), "month", now)
        assert metrics.total_revenue == 0

    @pytest.mark.asyncio
    async def test_empty(self, store, now):
        metrics = await store.get_dashboard_metrics(TenantScope(1), "month", now)
        assert metrics.total_revenue == 0
        assert metrics.avg_order_value == 0
        assert metrics.revenue_growth == 0
        assert metrics.recent_transactions == []


class TestDeduplication:
    """A charge and the payment attempt it settles count once."""

    @pytest.mark.asyncio
    async def test_linked_charge_counted_once(self, store, seed, at, now):
        attempt = seed.payment(50, created=at(2024, 3, 3, 10))
        seed.charge(50, payment_attempt_ref=attempt, created=at(2024, 3, 3, 10))
        seed.charge(25, created=at(2024, 3, 4, 10))

        metrics = await store.get_dashboard_metrics(TenantScope(1), "month", now)

        assert metrics.total_revenue == 75
        assert metrics.successful_payments == 2
        assert metrics.total_payments == 2

    @pytest.mark.asyncio
    async def test_other_tenant_attempt_does_not_dedup(self, store, seed, at, now):
        """Linking only matches payment attempts of the same tenant."""
        seed.payment(99, tenant_id=2, processor_id="pi_shared", created=at(2024, 3, 3, 10))
        seed.charge(40, payment_attempt_ref="pi_shared", created=at(2024, 3, 3, 10))

        metrics = await store.get_dashboard_metrics(TenantScope(1), "month", now)

        assert metrics.total_revenue == 40

    @pytest.mark.asyncio
    async def test_dangling_reference_counts_charge(self, store, seed, at, now):
        seed.charge(40, payment_attempt_ref="pi_not_synced", created=at(2024, 3, 3, 10))
        metrics = await store.get_dashboard_metrics(TenantScope(1), "month", now)
        assert metrics.total_revenue == 40

    @pytest.mark.asyncio
    async def test_recent_excludes_linked_charge(self, store, seed, at, now):
        attempt = seed.payment(50, created=at(2024, 3, 3, 10))
        seed.charge(50, payment_attempt_ref=attempt, created=at(2024, 3, 3, 10))

        metrics = await store.get_dashboard_metrics(TenantScope(1), "month", now)

        assert [t.id for t in metrics.recent_transactions] == [attempt]


class TestOtherPeriods:
    """Today, week and year layouts."""

    @pytest.mark.asyncio
    async def test_year_always_twelve(self, store, seed, at, now):
        seed.payment(10, created=at(2024, 2, 10, 10))

        metrics = await store.get_dashboard_metrics(TenantScope(1), "year", now)

        assert len(metrics.revenue_chart_current) == 12
        assert len(metrics.revenue_chart_previous) == 12
        assert metrics.revenue_chart_current[1].label == "Feb"
        assert metrics.revenue_chart_current[1].revenue == 10

    @pytest.mark.asyncio
    async def test_today_hourly(self, store, seed, at, now):
        seed.payment(12, created=at(2024, 3, 15, 12, 0))
        seed.payment(3, created=at(2024, 3, 14, 23, 30))

        metrics = await store.get_dashboard_metrics(TenantScope(1), "today", now)

        assert len(metrics.revenue_chart_current) == 24
        assert metrics.revenue_chart_current[12].label == "12:00"
        assert metrics.revenue_chart_current[12].revenue == 12
        assert metrics.revenue_chart_previous[23].revenue == 3
        assert metrics.total_revenue == 12

    @pytest.mark.asyncio
    async def test_week_layout(self, store, seed, ago, now):
        """A payment 8 days ago lands in the previous week and in "Week -1"."""
        seed.payment(40, created=ago(8))
        seed.payment(10, created=ago(1))

        metrics = await store.get_dashboard_metrics(TenantScope(1), "week", now)

        current = metrics.revenue_chart_current
        previous = metrics.revenue_chart_previous
        assert [(p.label, p.revenue) for p in current] == [("Current Week", 10)]
        assert [p.label for p in previous] == ["Week -4", "Week -3", "Week -2", "Week -1"]
        assert previous[3].revenue == 40
        assert metrics.total_revenue == 10
        assert metrics.revenue_growth == -75

    @pytest.mark.asyncio
    async def test_week_growth_baseline_is_seven_days(self, store, seed, ago, now):
        """Older weeks fill the previous chart but never the growth baseline."""
        seed.payment(40, created=ago(8))
        seed.payment(500, created=ago(20))
        seed.payment(10, created=ago(1))

        metrics = await store.get_dashboard_metrics(TenantScope(1), "week", now)

        previous = metrics.revenue_chart_previous
        assert [p.revenue for p in previous] == [0, 0, 500, 40]
        assert metrics.revenue_growth == -75


class TestRecentTransactions:
    """Merged newest-first feed of payment attempts and unlinked charges."""

    @pytest.mark.asyncio
    async def test_ten_sorted_mixed(self, store, seed, ago, now):
        seed.customer(name="Ann", processor_id="cus_ann")
        for i in range(8):
            seed.payment(10 + i, created=ago(1, hours=i * 2), customer_ref="cus_ann")
        for i in range(5):
            seed.charge(20 + i, created=ago(1, hours=i * 2 + 1))

        metrics = await store.get_dashboard_metrics(TenantScope(1), "month", now)
        recent = metrics.recent_transactions

        assert len(recent) == 10
        created = [t.created for t in recent]
        assert created == sorted(created, reverse=True)
        assert {t.kind for t in recent} == {"payment_intent", "charge"}

        payload = metrics.to_dict()["recentTransactions"]
        first_attempt = next(t for t in payload if t["type"] == "payment_intent")
        first_charge = next(t for t in payload if t["type"] == "charge")
        assert first_attempt["customerName"] == "Ann"
        assert first_charge["customerName"] == "Unknown Customer"

    @pytest.mark.asyncio
    async def test_limited_to_current_window(self, store, seed, at, now):
        seed.payment(10, created=at(2024, 2, 10, 10))
        metrics = await store.get_dashboard_metrics(TenantScope(1), "month", now)
        assert metrics.recent_transactions == []


class TestScoping:
    """Tenant and sub-account isolation of aggregates."""

    @pytest.mark.asyncio
    async def test_tenant_isolation(self, store, seed, at, now):
        seed.payment(10, created=at(2024, 3, 2, 10), tenant_id=1)
        seed.payment(1000, created=at(2024, 3, 2, 10), tenant_id=2)
        seed.customer(tenant_id=2, created=at(2024, 3, 2, 10))

        metrics = await store.get_dashboard_metrics(TenantScope(1), "month", now)

        assert metrics.total_revenue == 10
        assert metrics.total_customers == 0
        assert len(metrics.recent_transactions) == 1

    @pytest.mark.asyncio
    async def test_sub_account(self, store, seed, at, now):
        seed.payment(10, created=at(2024, 3, 2, 10), sub_account_id=1)
        seed.payment(20, created=at(2024, 3, 2, 10), sub_account_id=2)

        scoped = await store.get_dashboard_metrics(TenantScope(1, 2), "month", now)
        merged = await store.get_dashboard_metrics(TenantScope(1), "month", now)

        assert scoped.total_revenue == 20
        assert merged.total_revenue == 30


class TestFailures:
    """Any failed sub-query fails the whole aggregation."""

    @pytest.mark.asyncio
    async def test_sub_query_failure(self, store, now):
        boom = RuntimeError("disk on fire")
        with patch.object(store, "_count_customers", AsyncMock(side_effect=boom)):
            with pytest.raises(MetricsAggregationError) as exc_info:
                await store.get_dashboard_metrics(TenantScope(1), "month", now)

        assert exc_info.value.__cause__ is boom
        assert exc_info.value.period == "month"

    @pytest.mark.asyncio
    async def test_summary_failure(self, store):
        with patch.object(store, "_sum_refunds", AsyncMock(side_effect=RuntimeError("x"))):
            with pytest.raises(MetricsAggregationError):
                await store.get_financial_summary(TenantScope(1))


class TestFinancialSummary:
    """Tests for get_financial_summary."""

    @pytest.mark.asyncio
    async def test_net_revenue_and_customers(self, store, seed, at):
        seed.customer(created=at(2023, 6, 1))
        seed.customer(created=at(2024, 3, 5))
        seed.payment(100, created=at(2024, 3, 5, 10))
        seed.payment(40, created=at(2024, 2, 5, 10))
        seed.refund(30, created=at(2024, 3, 6, 10))
        seed.refund(5, status="failed", created=at(2024, 3, 6, 10))

        summary = await store.get_financial_summary(
            TenantScope(1), explicit_range("2024-03-01", "2024-03-31")
        )

        assert summary.total_revenue == 100
        assert summary.net_revenue == 70
        assert summary.total_customers == 2
        assert summary.new_customers == 1
        assert summary.successful_payments == 1
        assert summary.avg_order_value == 100

    @pytest.mark.asyncio
    async def test_all_time(self, store, seed, at):
        seed.payment(100, created=at(2024, 3, 5, 10))
        seed.payment(40, created=at(2020, 2, 5, 10))

        summary = await store.get_financial_summary(TenantScope(1))

        assert summary.total_revenue == 140
        assert summary.total_payments == 2

    @pytest.mark.asyncio
    async def test_end_of_day_inclusive(self, store, seed, at):
        seed.payment(10, created=at(2024, 3, 31, 23, 59, 59))
        summary = await store.get_financial_summary(
            TenantScope(1), explicit_range("2024-03-01", "2024-03-31")
        )
        assert summary.total_revenue == 10


class TestServiceMetrics:
    """Tests for AnalyticsService dashboard and summary."""

    @pytest.mark.asyncio
    async def test_dashboard_dict(self, service, seed, at, now):
        seed.payment(10, created=at(2024, 3, 2, 10))

        result = await service.dashboard(1, period_kind="month", now=now)

        assert result["totalRevenue"] == {"amount": 10, "growth": 100}
        assert result["filterType"] == "month"
        assert len(result["revenueChart"]["current"]) == 31
        assert result["recentTransactions"][0]["dateTime"] == "2024-03-02T10:00:00.000Z"

    @pytest.mark.asyncio
    async def test_invalid_period_falls_back_to_year(self, service, now):
        result = await service.dashboard(1, period_kind="fortnight", now=now)
        assert result["filterType"] == "year"
        assert len(result["revenueChart"]["current"]) == 12

    @pytest.mark.asyncio
    async def test_missing_tenant(self, service):
        with pytest.raises(MissingTenantError):
            await service.dashboard(None)

    @pytest.mark.asyncio
    async def test_summary_shorthand(self, service, seed, ago, now):
        seed.payment(10, created=ago(2))
        seed.payment(20, created=ago(60))

        result = await service.financial_summary(1, period="30d", now=now)

        assert result["totalRevenue"] == 10

    @pytest.mark.asyncio
    async def test_summary_explicit_dates_win(self, service, seed, ago, at, now):
        seed.payment(10, created=ago(2))
        seed.payment(20, created=at(2024, 1, 10, 10))

        result = await service.financial_summary(
            1, start_date="2024-01-01", end_date="2024-01-31", period="7d", now=now
        )

        assert result["totalRevenue"] == 20
