"""
Sort resolver: maps "column:direction" onto a per-entity whitelist.

Never raises; anything unrecognised falls back to the entity default
(newest first).
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class Direction(str, Enum):
    ASC = "ASC"
    DESC = "DESC"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Direction":
        """Ascending unless the value is exactly "desc"."""
        return cls.DESC if value == "desc" else cls.ASC


@dataclass(frozen=True)
class SortOrder:
    """Resolved ORDER BY: a whitelisted expression, a direction, and a tiebreak."""
    expr: str
    direction: Direction
    tiebreak: Optional[str] = None

    def to_sql(self) -> str:
        order_sql = f"{self.expr} {self.direction.value} NULLS LAST"
        if self.tiebreak and self.tiebreak != self.expr:
            order_sql += f", {self.tiebreak} {self.direction.value}"
        return order_sql


def resolve_sort(
    sort: Optional[str],
    whitelist: Dict[str, str],
    default_expr: str,
    tiebreak: Optional[str] = None,
) -> SortOrder:
    """
    Resolve a "column:direction" string.

    Args:
        sort: Raw sort string from the client, e.g. "amount:desc"
        whitelist: Public column name → SQL expression
        default_expr: Creation-time expression used when the column is unknown
        tiebreak: Stable secondary ordering (usually the primary key)

    Returns:
        SortOrder; unknown or missing columns yield `default_expr DESC`
    """
    default = SortOrder(default_expr, Direction.DESC, tiebreak)
    if not sort or not isinstance(sort, str):
        return default

    column, _, direction = sort.partition(":")
    expr = whitelist.get(column.strip())
    if expr is None:
        return default

    return SortOrder(expr, Direction.parse(direction.strip()), tiebreak)
