"""
Redis cache for analytics results.

Provides:
- RedisCache: thin async Redis client; every failure surfaces as CacheError
- MetricsCache: best-effort memoization façade keyed by (tenant, sub-account, period)
- CacheStats: hit/miss/error counters for monitoring

The cache is never load-bearing: read, decode, write and invalidation failures
are logged at WARNING and treated as misses. Errors from the compute function
itself always propagate.

Usage:
    from paymirror.cache import MetricsCache, build_cache_client

    metrics_cache = MetricsCache(build_cache_client())
    data = await metrics_cache.get_or_compute(tenant_id, None, "month", compute)
"""
import asyncio
import inspect
import json
from dataclasses import asdict, dataclass, fields
from typing import Any, Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from paymirror.config import CacheConfig, config
from paymirror.exceptions import CacheError
from paymirror.observability import Timer, get_logger, timed

logger = get_logger(__name__)


@dataclass
class CacheStats:
    """Counters for the façade; errors include read, decode, write and invalidation failures."""

    hits: int = 0
    misses: int = 0
    errors: int = 0
    sets: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        """Hits as a percentage of lookups that reached the cache."""
        lookups = self.hits + self.misses
        return self.hits / lookups * 100 if lookups else 0.0

    def to_dict(self) -> dict:
        return {**asdict(self), "hit_rate_percent": round(self.hit_rate, 2)}

    def reset(self) -> None:
        for counter in fields(self):
            setattr(self, counter.name, 0)


class RedisCache:
    """
    Async Redis client opened lazily on first use and reused afterwards.

    All methods raise CacheError on connection or command failure.
    """

    def __init__(self, url: str, socket_timeout: float = 5.0):
        self.url = url
        self.socket_timeout = socket_timeout
        self._client: Optional[redis.Redis] = None
        self._lock = asyncio.Lock()

    async def _get_client(self) -> redis.Redis:
        async with self._lock:
            if self._client is None:
                try:
                    self._client = redis.from_url(
                        self.url,
                        encoding="utf-8",
                        decode_responses=True,
                        socket_timeout=self.socket_timeout,
                        socket_connect_timeout=self.socket_timeout,
                    )
                except (RedisError, ValueError) as e:
                    raise CacheError("Redis connection failed", str(e)) from e
                logger.info("Redis client created")
            return self._client

    async def get(self, key: str) -> Optional[str]:
        client = await self._get_client()
        try:
            return await client.get(key)
        except (RedisError, OSError) as e:
            raise CacheError("Cache read failed", str(e), key=key) from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        client = await self._get_client()
        try:
            await client.setex(key, ttl_seconds, value)
        except (RedisError, OSError) as e:
            raise CacheError("Cache write failed", str(e), key=key) from e

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern (SCAN + DEL). Returns count."""
        client = await self._get_client()
        deleted = 0
        try:
            # SCAN rather than KEYS so large keyspaces are not blocked
            async for key in client.scan_iter(match=pattern, count=100):
                deleted += await client.delete(key)
        except (RedisError, OSError) as e:
            raise CacheError("Cache invalidation failed", str(e), key=pattern) from e
        return deleted

    async def close(self) -> None:
        async with self._lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
                logger.info("Redis client closed")


def build_cache_client(cfg: CacheConfig = None) -> Optional[RedisCache]:
    """Resolve the optional cache client once at startup; None when disabled."""
    cfg = cfg or config.cache
    if not cfg.enabled or not cfg.redis_url:
        logger.info("Metrics cache disabled")
        return None
    return RedisCache(cfg.redis_url, socket_timeout=cfg.socket_timeout)


class MetricsCache:
    """
    Best-effort write-through memoization in front of the metrics aggregator.

    Keys: "{prefix}:{tenant}:{sub-account or 'all'}:{period}".
    No negative caching and no stampede protection: concurrent misses for the
    same key each compute and write.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        ttl_seconds: int = None,
        key_prefix: str = None,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds or config.cache.ttl_seconds
        self.key_prefix = key_prefix or config.cache.key_prefix
        self._stats = CacheStats()

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def build_key(self, tenant_id: int, sub_account_id: Optional[int], period_key: str) -> str:
        scope = sub_account_id if sub_account_id is not None else "all"
        return f"{self.key_prefix}:{tenant_id}:{scope}:{period_key}"

    async def _read(self, key: str) -> Optional[Any]:
        """Cached value, or None on miss or any cache failure."""
        try:
            with Timer("cache_get", logger, warn_threshold_ms=500):
                raw = await self.client.get(key)
        except Exception as e:
            self._stats.errors += 1
            logger.warning(f"Cache read failed, computing fresh: {e}", extra={"cache_key": key})
            return None

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            self._stats.errors += 1
            logger.warning(f"Ignoring undecodable cache entry: {e}", extra={"cache_key": key})
            return None

    async def _write(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self.client.set(key, json.dumps(value, default=str), ttl_seconds)
            self._stats.sets += 1
        except Exception as e:
            self._stats.errors += 1
            logger.warning(f"Cache write failed: {e}", extra={"cache_key": key})

    async def get_or_compute(
        self,
        tenant_id: int,
        sub_account_id: Optional[int],
        period_key: str,
        compute_fn: Callable[[], Any],
        ttl_seconds: Optional[int] = None,
    ) -> Any:
        """
        Return the cached value, or compute, store and return it.

        Args:
            tenant_id: Tenant the value belongs to
            sub_account_id: Optional sub-account scope
            period_key: Period label ("month", "2024-01-01_2024-01-31", ...)
            compute_fn: Zero-argument callable, sync or async; must return a JSON-serializable value
            ttl_seconds: Entry TTL (default: configured TTL)

        Returns:
            Cached or freshly computed value
        """
        if not self.enabled:
            return await _call(compute_fn)

        key = self.build_key(tenant_id, sub_account_id, period_key)

        cached = await self._read(key)
        if cached is not None:
            self._stats.hits += 1
            logger.debug("Cache hit", extra={"cache_key": key})
            return cached

        self._stats.misses += 1
        value = await _call(compute_fn)
        await self._write(key, value, ttl_seconds or self.ttl_seconds)
        return value

    @timed("cache_invalidate", warn_threshold_ms=500)
    async def invalidate(self, tenant_id: int) -> int:
        """Drop every cached entry of a tenant. Returns the number of keys removed."""
        if not self.enabled:
            return 0
        pattern = f"{self.key_prefix}:{tenant_id}:*"
        try:
            deleted = await self.client.delete_pattern(pattern)
        except Exception as e:
            self._stats.errors += 1
            logger.warning(f"Cache invalidation failed: {e}", extra={"tenant_id": tenant_id})
            return 0
        self._stats.invalidations += deleted
        logger.debug(f"Invalidated {deleted} keys matching '{pattern}'")
        return deleted

    def get_stats(self) -> dict:
        """Get cache statistics."""
        return {
            "enabled": self.enabled,
            "ttl_seconds": self.ttl_seconds,
            **self._stats.to_dict(),
        }

    def reset_stats(self) -> None:
        self._stats.reset()


async def _call(compute_fn: Callable[[], Any]) -> Any:
    result = compute_fn()
    if inspect.isawaitable(result):
        result = await result
    return result
