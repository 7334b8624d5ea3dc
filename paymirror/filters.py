"""
Filter builder: turns optional query parameters into a conjunction of row predicates.

Every predicate is a parameterized SQL fragment. Column expressions only ever
come from the static per-entity whitelists in paymirror.entities; client input
is only ever bound as a parameter.
"""
import calendar
from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from paymirror.models import ListParams, TenantScope
from paymirror.observability import get_logger
from paymirror.validators import is_date_only, parse_date_param

logger = get_logger(__name__)

# Period shorthand → days back from now
SHORTHAND_DAYS = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "1y": 365,
}

LIKE_ESCAPE = "\\"


@dataclass(frozen=True)
class Predicate:
    """A parameterized SQL condition."""
    clause: str
    params: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class FilterField:
    """A whitelisted equality filter: SQL expression plus typed coercion."""
    expr: str
    coerce: Callable[[Any], Any]


def combine(predicates: Iterable[Predicate]) -> Tuple[str, List[Any]]:
    """AND all predicates together; an empty list matches every row."""
    where_clauses = []
    params: List[Any] = []
    for predicate in predicates:
        where_clauses.append(predicate.clause)
        params.extend(predicate.params)
    if not where_clauses:
        return "TRUE", params
    return " AND ".join(where_clauses), params


# ═══════════════════════════════════════════════════════════════════════════════
# DATE RANGES
# ═══════════════════════════════════════════════════════════════════════════════

def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min, tzinfo=timezone.utc)


def end_of_day(moment: datetime) -> datetime:
    """23:59:59.999 UTC of the same calendar day."""
    return datetime.combine(moment.date(), time(23, 59, 59, 999000), tzinfo=timezone.utc)


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@dataclass
class DateRange:
    """Closed UTC interval `start <= created <= end`; either side may be open."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @property
    def start_epoch(self) -> Optional[int]:
        return int(self.start.timestamp()) if self.start else None

    @property
    def end_epoch(self) -> Optional[int]:
        # Epoch columns hold whole seconds, so .999 truncates to the same second
        return int(self.end.timestamp()) if self.end else None

    @property
    def is_empty(self) -> bool:
        return self.start is None and self.end is None

    def predicates(self, column: str) -> List[Predicate]:
        result = []
        if self.start is not None:
            result.append(Predicate(f"{column} >= ?", (self.start_epoch,)))
        if self.end is not None:
            result.append(Predicate(f"{column} <= ?", (self.end_epoch,)))
        return result


def year_month_range(year: int, month: Optional[int] = None) -> DateRange:
    """
    Calendar range for a year, or one month of it.

    A month outside 1..12 is ignored and the whole year is returned.

    Examples:
        >>> year_month_range(2024, 2).end
        datetime.datetime(2024, 2, 29, 23, 59, 59, 999000, tzinfo=datetime.timezone.utc)
    """
    if month is not None and 1 <= month <= 12:
        last_day = calendar.monthrange(year, month)[1]
        first = datetime(year, month, 1, tzinfo=timezone.utc)
        last = datetime(year, month, last_day, tzinfo=timezone.utc)
    else:
        first = datetime(year, 1, 1, tzinfo=timezone.utc)
        last = datetime(year, 12, 31, tzinfo=timezone.utc)
    return DateRange(first, end_of_day(last))


def shorthand_range(period: Optional[str], now: datetime) -> Optional[DateRange]:
    """7d/30d/90d/1y → [now - N days, now]; None for anything else."""
    if not period:
        return None
    days = SHORTHAND_DAYS.get(str(period).strip().lower())
    if days is None:
        return None
    now = _utc(now)
    return DateRange(now - timedelta(days=days), now)


def explicit_range(start_date: Any, end_date: Any) -> Optional[DateRange]:
    """
    Range from explicit startDate/endDate; None when neither parses.

    A date-only end date covers that whole day.
    """
    start = parse_date_param(start_date, "start_date")
    end = parse_date_param(end_date, "end_date")
    if end is not None and is_date_only(end_date):
        end = end_of_day(end)
    if start is None and end is None:
        return None
    return DateRange(start, end)


def resolve_date_ranges(params: ListParams, now: datetime) -> List[DateRange]:
    """
    All date ranges implied by the parameters (each is ANDed).

    Explicit dates take precedence over the period shorthand; year/month is an
    independent calendar constraint. A year no calendar date can carry is
    ignored like any other unusable filter value.
    """
    ranges = []

    window = explicit_range(params.start_date, params.end_date)
    if window is None:
        window = shorthand_range(params.period, now)
    if window is not None:
        ranges.append(window)

    if params.year is not None:
        if MINYEAR <= params.year <= MAXYEAR:
            ranges.append(year_month_range(params.year, params.month))
        else:
            logger.debug("Ignoring out-of-range year", extra={"value": params.year})

    return ranges


# ═══════════════════════════════════════════════════════════════════════════════
# PREDICATES
# ═══════════════════════════════════════════════════════════════════════════════

def escape_like(text: str) -> str:
    """Escape LIKE wildcards so user input matches literally."""
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def search_predicate(query: Optional[str], columns: Iterable[str]) -> Optional[Predicate]:
    """Case-insensitive substring match, OR-ed across the searchable columns."""
    columns = list(columns)
    if not query or not columns:
        return None
    pattern = f"%{escape_like(query)}%"
    clauses = [f"{column} ILIKE ? ESCAPE '{LIKE_ESCAPE}'" for column in columns]
    return Predicate("(" + " OR ".join(clauses) + ")", tuple(pattern for _ in columns))


def filter_predicates(
    filters: Dict[str, Any],
    whitelist: Dict[str, FilterField],
) -> List[Predicate]:
    """Equality predicates for whitelisted keys; other keys are dropped."""
    result = []
    for key, raw in (filters or {}).items():
        field = whitelist.get(key)
        if field is None:
            logger.debug("Dropping unknown filter key", extra={"filter_key": key})
            continue
        if raw is None or raw == "":
            continue
        try:
            value = field.coerce(raw)
        except ValueError:
            logger.debug("Dropping filter with invalid value", extra={"filter_key": key})
            continue
        result.append(Predicate(f"{field.expr} = ?", (value,)))
    return result


def scope_predicates(entity, scope: TenantScope) -> List[Predicate]:
    """Tenant first, then the optional sub-account."""
    result = [Predicate(f"{entity.tenant_column} = ?", (scope.tenant_id,))]
    if scope.sub_account_id is not None:
        result.append(Predicate(f"{entity.sub_account_column} = ?", (scope.sub_account_id,)))
    return result


def build_predicates(
    entity,
    scope: TenantScope,
    params: ListParams,
    now: Optional[datetime] = None,
) -> List[Predicate]:
    """
    Build the full predicate list for one entity listing.

    Args:
        entity: EntitySpec with the column whitelists
        scope: Tenant scope (always applied first)
        params: Raw list parameters
        now: Reference time for period shorthand (default: current UTC time)

    Returns:
        Predicates to AND together; never empty, the tenant predicate is always present
    """
    now = now or datetime.now(timezone.utc)

    predicates = scope_predicates(entity, scope)

    search = search_predicate(params.query, entity.search_columns)
    if search is not None:
        predicates.append(search)

    predicates.extend(filter_predicates(params.filter, entity.filters))

    for date_range in resolve_date_ranges(params, now):
        predicates.extend(date_range.predicates(entity.date_column))

    return predicates
