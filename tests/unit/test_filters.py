"""
Tests for paymirror.filters module.
"""
import pytest
from datetime import datetime, timedelta, timezone

from paymirror.entities import CUSTOMERS, PAYMENTS
from paymirror.filters import (
    DateRange,
    FilterField,
    Predicate,
    build_predicates,
    combine,
    escape_like,
    explicit_range,
    filter_predicates,
    resolve_date_ranges,
    search_predicate,
    shorthand_range,
    year_month_range,
)
from paymirror.models import ListParams, TenantScope
from paymirror.validators import coerce_bool, coerce_lower

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
UTC = timezone.utc


class TestYearMonthRange:
    """Tests for calendar year/month ranges."""

    def test_leap_year(self):
        """Year-only range covers Jan 1 to Dec 31 23:59:59.999."""
        result = year_month_range(2024)
        assert result.start == datetime(2024, 1, 1, tzinfo=UTC)
        assert result.end == datetime(2024, 12, 31, 23, 59, 59, 999000, tzinfo=UTC)

    def test_leap_february(self):
        result = year_month_range(2024, 2)
        assert result.start == datetime(2024, 2, 1, tzinfo=UTC)
        assert result.end == datetime(2024, 2, 29, 23, 59, 59, 999000, tzinfo=UTC)

    def test_non_leap_february(self):
        result = year_month_range(2023, 2)
        assert result.end.day == 28

    def test_year_2023_contains_no_feb_29(self):
        """Feb 2023 ends on the 28th, so the next day is March."""
        result = year_month_range(2023, 2)
        assert (result.end + timedelta(milliseconds=1)).month == 3

    @pytest.mark.parametrize("month,last_day", [(1, 31), (4, 30), (6, 30), (12, 31)])
    def test_month_lengths(self, month, last_day):
        assert year_month_range(2023, month).end.day == last_day

    @pytest.mark.parametrize("month", [0, 13, -1])
    def test_invalid_month_falls_back_to_year(self, month):
        result = year_month_range(2024, month)
        assert result == year_month_range(2024)

    def test_epochs(self):
        """Epoch bounds are whole seconds: .999 truncates."""
        result = year_month_range(2024)
        assert result.start_epoch == 1704067200
        assert result.end_epoch == 1735689599


class TestShorthandRange:
    """Tests for 7d/30d/90d/1y shorthand."""

    @pytest.mark.parametrize("period,days", [("7d", 7), ("30d", 30), ("90d", 90), ("1y", 365)])
    def test_known_periods(self, period, days):
        result = shorthand_range(period, NOW)
        assert result.end == NOW
        assert result.start == NOW - timedelta(days=days)

    def test_case_insensitive(self):
        assert shorthand_range("7D", NOW) == shorthand_range("7d", NOW)

    @pytest.mark.parametrize("period", [None, "", "2w", "week"])
    def test_unknown(self, period):
        assert shorthand_range(period, NOW) is None

    def test_naive_now_taken_as_utc(self):
        result = shorthand_range("7d", datetime(2024, 3, 15, 12, 0))
        assert result.end == NOW


class TestExplicitRange:
    """Tests for explicit startDate/endDate."""

    def test_date_only_end_covers_whole_day(self):
        result = explicit_range("2024-01-01", "2024-01-31")
        assert result.start == datetime(2024, 1, 1, tzinfo=UTC)
        assert result.end == datetime(2024, 1, 31, 23, 59, 59, 999000, tzinfo=UTC)

    def test_timestamp_end_kept(self):
        result = explicit_range(None, "2024-01-31T10:00:00Z")
        assert result.start is None
        assert result.end == datetime(2024, 1, 31, 10, 0, tzinfo=UTC)

    def test_unparseable_ignored(self):
        assert explicit_range("garbage", "also-garbage") is None
        assert explicit_range(None, None) is None

    def test_open_ended_predicates(self):
        """A start-only range produces only a lower bound."""
        result = explicit_range("2024-01-01", None)
        predicates = result.predicates("t.created")
        assert predicates == [Predicate("t.created >= ?", (1704067200,))]


class TestResolveDateRanges:
    """Tests for date precedence."""

    def test_explicit_dates_win_over_period(self):
        params = ListParams(period="7d", start_date="2024-01-01", end_date="2024-01-31")
        ranges = resolve_date_ranges(params, NOW)
        assert len(ranges) == 1
        assert ranges[0].start == datetime(2024, 1, 1, tzinfo=UTC)

    def test_period_used_without_dates(self):
        ranges = resolve_date_ranges(ListParams(period="30d"), NOW)
        assert ranges == [shorthand_range("30d", NOW)]

    def test_invalid_dates_fall_back_to_period(self):
        params = ListParams(period="7d", start_date="nope")
        ranges = resolve_date_ranges(params, NOW)
        assert ranges == [shorthand_range("7d", NOW)]

    def test_year_month_is_anded(self):
        params = ListParams(period="90d", year=2024, month=2)
        ranges = resolve_date_ranges(params, NOW)
        assert len(ranges) == 2
        assert ranges[1] == year_month_range(2024, 2)

    def test_nothing(self):
        assert resolve_date_ranges(ListParams(), NOW) == []

    @pytest.mark.parametrize("year", [0, -1, 10000])
    def test_unrepresentable_year_ignored(self, year):
        assert resolve_date_ranges(ListParams(year=year, month=6), NOW) == []

    def test_unrepresentable_year_keeps_period(self):
        ranges = resolve_date_ranges(ListParams(period="7d", year=10000), NOW)
        assert ranges == [shorthand_range("7d", NOW)]

    def test_boundary_years(self):
        ranges = resolve_date_ranges(ListParams(year=9999, month=12), NOW)
        assert ranges == [year_month_range(9999, 12)]
        assert resolve_date_ranges(ListParams(year=1), NOW)[0].start == datetime(1, 1, 1, tzinfo=UTC)


class TestSearchPredicate:
    """Tests for free-text search."""

    def test_or_across_columns(self):
        predicate = search_predicate("alice", ["c.name", "c.email"])
        assert predicate.clause.startswith("(")
        assert " OR " in predicate.clause
        assert predicate.clause.count("ILIKE ?") == 2
        assert predicate.params == ("%alice%", "%alice%")

    def test_wildcards_escaped(self):
        assert escape_like("50%_off") == "50\\%\\_off"
        assert escape_like("a\\b") == "a\\\\b"

    def test_empty_query(self):
        assert search_predicate("", ["c.name"]) is None
        assert search_predicate(None, ["c.name"]) is None

    def test_no_columns(self):
        assert search_predicate("x", []) is None


class TestFilterPredicates:
    """Tests for whitelisted equality filters."""

    WHITELIST = {
        "status": FilterField("p.status", coerce_lower),
        "active": FilterField("p.active", coerce_bool),
    }

    def test_known_key(self):
        result = filter_predicates({"status": "Succeeded"}, self.WHITELIST)
        assert result == [Predicate("p.status = ?", ("succeeded",))]

    def test_unknown_key_dropped(self):
        """Unknown keys never become query fragments."""
        result = filter_predicates({"tenant_id; DROP TABLE x": 2, "tenant_id": 2}, self.WHITELIST)
        assert result == []

    def test_invalid_value_dropped(self):
        assert filter_predicates({"active": "maybe"}, self.WHITELIST) == []

    def test_empty_value_skipped(self):
        assert filter_predicates({"status": ""}, self.WHITELIST) == []

    def test_coerced(self):
        result = filter_predicates({"active": "true"}, self.WHITELIST)
        assert result[0].params == (True,)


class TestCombine:
    """Tests for predicate conjunction."""

    def test_empty(self):
        assert combine([]) == ("TRUE", [])

    def test_and(self):
        sql, params = combine([Predicate("a = ?", (1,)), Predicate("b = ?", (2,))])
        assert sql == "a = ? AND b = ?"
        assert params == [1, 2]


class TestDateRange:
    """Tests for DateRange."""

    def test_empty(self):
        assert DateRange().is_empty
        assert DateRange().predicates("x.created") == []


class TestBuildPredicates:
    """Tests for the full predicate list."""

    def test_tenant_always_first(self):
        predicates = build_predicates(CUSTOMERS, TenantScope(7), ListParams(), NOW)
        assert predicates == [Predicate("c.tenant_id = ?", (7,))]

    def test_sub_account_second(self):
        predicates = build_predicates(CUSTOMERS, TenantScope(7, 3), ListParams(), NOW)
        assert predicates[0] == Predicate("c.tenant_id = ?", (7,))
        assert predicates[1] == Predicate("c.sub_account_id = ?", (3,))

    def test_everything(self):
        params = ListParams(
            query="bob",
            filter={"status": "failed", "bogus": 1},
            year=2024,
            month=3,
        )
        predicates = build_predicates(PAYMENTS, TenantScope(1), params, NOW)
        clauses = [p.clause for p in predicates]

        assert clauses[0] == "p.tenant_id = ?"
        assert any("ILIKE" in c for c in clauses)
        assert "p.status = ?" in clauses
        assert "p.created >= ?" in clauses
        assert "p.created <= ?" in clauses
        assert not any("bogus" in c for c in clauses)
