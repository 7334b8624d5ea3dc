"""
Custom exception hierarchy for the payment mirror analytics engine.

Exception Hierarchy:
    PayMirrorError (base)
    ├── MetricsAggregationError - A dashboard/summary sub-query failed (fatal)
    └── CacheError              - Cache client failure (always swallowed by the façade)

    ValidationError             - Input validation failed
    └── MissingTenantError      - Tenant id absent or invalid (always fatal)

Storage errors raised by DuckDB are not wrapped by listing queries; they
propagate to the caller unchanged.
"""
from typing import Any, Optional


class PayMirrorError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class MetricsAggregationError(PayMirrorError):
    """
    One of the aggregation sub-queries failed.

    Partial metrics are never returned; the whole aggregation fails.
    """

    def __init__(self, message: str, details: Optional[str] = None, period: Optional[str] = None):
        super().__init__(message, details)
        self.period = period


class CacheError(PayMirrorError):
    """
    Cache client could not connect, read, or write.

    Raised by the cache client only; the cache façade treats it as a miss.
    """

    def __init__(self, message: str, details: Optional[str] = None, key: Optional[str] = None):
        super().__init__(message, details)
        self.key = key


class ValidationError(Exception):
    """
    Input validation failed.

    Most query parameters are clamped or dropped instead of raising;
    this is reserved for inputs with no safe fallback.
    """

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"


class MissingTenantError(ValidationError):
    """Every read must be scoped by a tenant; there is no default tenant."""

    def __init__(self, value: Any = None):
        super().__init__("tenant_id", "Tenant id is required", value)
