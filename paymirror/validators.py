"""
Input validation functions for query parameters.

Two families live here:
- strict validators (validate_*) raise ValidationError on invalid input
- lenient coercers (clamp_*, coerce_*, parse_*) never raise for bad client
  input; they clamp into range or fall back to a default

Only the tenant id has no safe fallback, so validate_tenant_id always raises.
"""

import sys
from datetime import date, datetime, time, timezone
from typing import Any, Optional

from paymirror.config import config
from paymirror.exceptions import MissingTenantError, ValidationError
from paymirror.observability import get_logger

logger = get_logger(__name__)

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = config.query.default_page_size
MAX_PAGE_SIZE = config.query.max_page_size
# Keeps (page - 1) * page_size inside a signed 64-bit OFFSET
MAX_PAGE = sys.maxsize // MAX_PAGE_SIZE

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


def validate_tenant_id(value: Any) -> int:
    """
    Validate the tenant id every query is scoped by.

    Raises:
        MissingTenantError: If the id is missing, not an integer, or not positive
    """
    if value is None or value == "":
        raise MissingTenantError(value)

    try:
        tenant_id = coerce_int(value)
    except ValueError:
        raise MissingTenantError(value)

    if tenant_id <= 0:
        raise MissingTenantError(value)

    return tenant_id


def coerce_int(value: Any) -> int:
    """Coerce a query-string value to int. Raises ValueError on garbage."""
    if isinstance(value, bool):
        raise ValueError(f"boolean is not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValueError(f"not an integer: {value!r}")


def coerce_bool(value: Any) -> bool:
    """Coerce a query-string value to bool. Raises ValueError on garbage."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    if value in (0, 1):
        return bool(value)
    raise ValueError(f"not a boolean: {value!r}")


def coerce_str(value: Any) -> str:
    """Coerce a scalar to a stripped string. Raises ValueError on containers."""
    if isinstance(value, (dict, list, tuple, set)) or value is None:
        raise ValueError(f"not a scalar: {value!r}")
    return str(value).strip()


def coerce_lower(value: Any) -> str:
    """Lower-cased string, for case-insensitive codes like currency."""
    return coerce_str(value).lower()


def optional_int(value: Any, field: str = "value") -> Optional[int]:
    """Lenient int: None for missing or unparseable input."""
    if value is None or value == "":
        return None
    try:
        return coerce_int(value)
    except ValueError:
        logger.debug(f"Ignoring non-integer {field}", extra={"value": value})
        return None


def validate_sub_account_id(value: Any) -> Optional[int]:
    """
    Normalize an optional sub-account id.

    Ownership of the sub-account by the tenant is confirmed upstream; here we
    only drop values that cannot be an id. The tenant filter still applies.
    """
    sub_account_id = optional_int(value, "account_id")
    if sub_account_id is not None and sub_account_id <= 0:
        logger.debug("Ignoring non-positive account id", extra={"value": value})
        return None
    return sub_account_id


def clamp_page(value: Any) -> int:
    """Page number, clamped to [1, MAX_PAGE]."""
    page = optional_int(value, "page")
    if page is None:
        return DEFAULT_PAGE
    return min(max(page, 1), MAX_PAGE)


def clamp_page_size(value: Any, max_value: int = MAX_PAGE_SIZE) -> int:
    """Page size, clamped to [1, max_value]."""
    page_size = optional_int(value, "page_size")
    if page_size is None:
        return DEFAULT_PAGE_SIZE
    return min(max(page_size, 1), max_value)


def validate_date_string(
    value: str,
    field: str = "date",
) -> datetime:
    """
    Validate and parse a date or ISO-8601 datetime string into an aware UTC datetime.

    Args:
        value: "YYYY-MM-DD" or a full ISO-8601 timestamp
        field: Field name for error messages

    Returns:
        Parsed datetime in UTC (date-only input yields midnight UTC)

    Raises:
        ValidationError: If the value is missing or malformed
    """
    if not value:
        raise ValidationError(field, "Date is required", value)

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string", value)

    text = value.strip()
    try:
        if len(text) == 10:
            parsed_date = date.fromisoformat(text)
            return datetime.combine(parsed_date, time.min, tzinfo=timezone.utc)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(
            field,
            "Invalid date format. Expected YYYY-MM-DD or ISO-8601",
            value
        )

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError:
        # Offset pushes the instant past year 1 or year 9999
        raise ValidationError(field, "Date out of range", value)


def is_date_only(value: Optional[str]) -> bool:
    """True for a bare "YYYY-MM-DD" string."""
    return isinstance(value, str) and len(value.strip()) == 10


def parse_date_param(value: Any, field: str = "date") -> Optional[datetime]:
    """Lenient date parsing: None when missing or malformed."""
    if value is None or value == "":
        return None
    try:
        return validate_date_string(value, field)
    except ValidationError as e:
        logger.debug(f"Ignoring invalid {field}: {e}")
        return None
