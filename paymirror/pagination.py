"""
Offset pagination for entity listings.

The total count always comes from an independent COUNT query sharing the
page's predicate, never from the returned slice.
"""
import asyncio
import math
import sys
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from paymirror.validators import MAX_PAGE_SIZE, clamp_page, clamp_page_size


def total_pages(total_count: int, page_size: int) -> int:
    """ceil(total_count / page_size); zero rows means zero pages."""
    if total_count <= 0:
        return 0
    return math.ceil(total_count / page_size)


@dataclass(frozen=True)
class PageRequest:
    """Clamped page/page-size pair."""
    page: int = 1
    page_size: int = 10

    @classmethod
    def from_raw(cls, page: Any = None, page_size: Any = None,
                 max_page_size: int = MAX_PAGE_SIZE) -> "PageRequest":
        size = clamp_page_size(page_size, max_page_size)
        # OFFSET is a signed 64-bit integer
        return cls(min(clamp_page(page), sys.maxsize // size), size)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


@dataclass
class Page:
    """One page of rows plus the totals needed to render a pager."""
    data: List[Dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    current_page: int = 1
    page_size: int = 10

    @property
    def total_pages(self) -> int:
        return total_pages(self.total_count, self.page_size)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "totalCount": self.total_count,
            "totalPages": self.total_pages,
            "currentPage": self.current_page,
            "pageSize": self.page_size,
        }


async def paginate(
    fetch_one: Callable[[str, list], Awaitable[Optional[tuple]]],
    fetch_all: Callable[[str, list], Awaitable[list]],
    select_sql: str,
    count_sql: str,
    params: Sequence[Any],
    request: PageRequest,
    row_mapper: Callable[[tuple], Dict[str, Any]],
) -> Page:
    """
    Run the count and the page query concurrently.

    Args:
        fetch_one: Async single-row reader (used for COUNT)
        fetch_all: Async multi-row reader
        select_sql: Ordered SELECT without LIMIT/OFFSET
        count_sql: COUNT(*) query with the same predicate
        params: Parameters shared by both queries
        request: Clamped page request
        row_mapper: Row tuple → response dict

    Returns:
        Page; a page past the end is empty but keeps the real total count
    """
    count_row, rows = await asyncio.gather(
        fetch_one(count_sql, list(params)),
        fetch_all(
            f"{select_sql}\nLIMIT ? OFFSET ?",
            [*params, request.limit, request.offset],
        ),
    )
    return Page(
        data=[row_mapper(row) for row in rows],
        total_count=int(count_row[0] or 0) if count_row else 0,
        current_page=request.page,
        page_size=request.page_size,
    )
