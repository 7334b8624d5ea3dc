"""
Logging for the analytics engine: formatters, tenant-scoped context, timing.

Usage:
    from paymirror.observability import setup_logging, get_logger, log_context

    # Once, by the embedding process:
    setup_logging()

    # Per module:
    logger = get_logger(__name__)

    # Around a tenant-scoped aggregation:
    with log_context(tenant_id=42, period="month"):
        logger.info("Aggregating dashboard")
"""
import functools
import inspect
import json
import logging
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from paymirror.config import config

# Fields stamped onto every record emitted inside a log_context block
_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

# Built-in LogRecord attributes; anything else on a record came from `extra=`
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# Third-party loggers kept at WARNING unless include_libs is set
_NOISY_LOGGERS = ("redis", "asyncio")


def get_log_context() -> Dict[str, Any]:
    """Copy of the fields currently attached to every record."""
    return dict(_log_context.get())


def add_log_context(**kwargs) -> None:
    """Attach fields to every following record in this context."""
    _log_context.set({**_log_context.get(), **kwargs})


def clear_log_context() -> None:
    _log_context.set({})


class log_context:
    """Attach fields for the duration of a block, then restore the previous set."""

    def __init__(self, **fields: Any):
        self.fields = fields
        self.token = None

    def __enter__(self) -> Dict[str, Any]:
        self.token = _log_context.set({**_log_context.get(), **self.fields})
        return self.fields

    def __exit__(self, *args):
        _log_context.reset(self.token)


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Context fields overlaid with the record's own `extra=` fields."""
    fields = dict(_log_context.get())
    for key, value in vars(record).items():
        if key not in _RECORD_ATTRS and not key.startswith("_"):
            fields[key] = value
    return fields


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, fields, exception."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": _utc_now().isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_record_fields(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """`TIMESTAMP - LEVEL - LOGGER - MESSAGE | {fields}` for local runs."""

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"{_utc_now():%Y-%m-%d %H:%M:%S} - {record.levelname:8} - "
            f"{record.name} - {record.getMessage()}"
        )
        fields = _record_fields(record)
        if fields:
            line += f" | {fields}"
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: Optional[str] = None,
    json_format: Optional[bool] = None,
    include_libs: bool = False
) -> None:
    """
    Install a single root handler.

    Args:
        level: Root level name; defaults to LOG_LEVEL
        json_format: JSON lines instead of plain text; defaults to LOG_JSON
        include_libs: Leave redis/asyncio loggers at the root level
    """
    level = level or config.log.level
    if json_format is None:
        json_format = config.log.json_format

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper()))

    if not include_libs:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


# ═══════════════════════════════════════════════════════════════════════════════
# TIMING
# ═══════════════════════════════════════════════════════════════════════════════

def _log_duration(
    logger: logging.Logger,
    operation: str,
    elapsed_ms: float,
    warn_threshold_ms: float,
) -> None:
    """DEBUG normally; WARNING once an operation exceeds its threshold."""
    level = logging.WARNING if elapsed_ms > warn_threshold_ms else logging.DEBUG
    logger.log(level, f"{operation} completed", extra={"duration_ms": round(elapsed_ms, 2)})


class Timer:
    """
    Time a block; logs on exit when a logger is given.

    Usage:
        with Timer("dashboard_metrics", logger) as t:
            metrics = await store.get_dashboard_metrics(scope, "month")
        t.elapsed_ms
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None,
                 warn_threshold_ms: float = 1000):
        self.name = name
        self.logger = logger
        self.warn_threshold_ms = warn_threshold_ms
        self.start_time: float = 0
        self.end_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.end_time = time.perf_counter()
        self.elapsed_ms = (self.end_time - self.start_time) * 1000
        if self.logger:
            _log_duration(self.logger, self.name, self.elapsed_ms, self.warn_threshold_ms)


def timed(name: Optional[str] = None, warn_threshold_ms: float = 1000):
    """
    Decorator form of Timer for sync and async callables.

    The duration is logged to the decorated function's module logger, also
    when the call raises.
    """
    def decorator(func: Callable) -> Callable:
        operation = name or func.__name__
        func_logger = get_logger(func.__module__)

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                with Timer(operation, func_logger, warn_threshold_ms):
                    return await func(*args, **kwargs)
            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            with Timer(operation, func_logger, warn_threshold_ms):
                return func(*args, **kwargs)
        return sync_wrapper

    return decorator
