"""
Repository layer for the mirror store.

- BaseRepository: connection management, schema, concurrent reads
- ListingMixin: entity listings (filter, sort, paginate)
- MetricsMixin: dashboard metrics and financial summaries
"""
from paymirror.repositories.base import BaseRepository
from paymirror.repositories.listing import ListingMixin
from paymirror.repositories.metrics import MetricsMixin

__all__ = [
    "BaseRepository",
    "ListingMixin",
    "MetricsMixin",
]
