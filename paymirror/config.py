"""
Centralized configuration for the payment mirror analytics engine.

This module provides a single source of truth for all configuration values.
Configuration is loaded from environment variables with sensible defaults.

Usage:
    from paymirror.config import config

    db_path = config.database.path
    cache_ttl = config.cache.ttl_seconds
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class DatabaseConfig:
    """Mirror store (DuckDB) configuration."""

    path: str = field(
        default_factory=lambda: os.getenv("PAYMIRROR_DB_PATH", "data/paymirror.duckdb")
    )
    # Threads used to run independent reads concurrently
    read_workers: int = field(
        default_factory=lambda: int(os.getenv("PAYMIRROR_READ_WORKERS", "8"))
    )


@dataclass(frozen=True)
class CacheConfig:
    """Metrics cache configuration."""

    enabled: bool = field(default_factory=lambda: _env_bool("CACHE_ENABLED", "true"))
    redis_url: str = field(default_factory=lambda: os.getenv("REDIS_URL", ""))
    ttl_seconds: int = field(
        default_factory=lambda: int(os.getenv("CACHE_TTL_SECONDS", "3600"))
    )  # 1 hour
    key_prefix: str = "analytics"
    socket_timeout: float = 5.0


@dataclass(frozen=True)
class QueryConfig:
    """Listing and dashboard query defaults."""

    default_page_size: int = 10
    max_page_size: int = 100
    recent_transactions_limit: int = 10
    default_period_kind: str = "year"


@dataclass(frozen=True)
class LogConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    json_format: bool = field(default_factory=lambda: _env_bool("LOG_JSON", "false"))


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "0.3.0"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    log: LogConfig = field(default_factory=LogConfig)


# Global config instance
config = AppConfig()
