"""
Redis caching service for location resolution.

Provides caching for:
- Forward/reverse geocoding results
- Popular location aggregates

Only resolution results are cached here. Rate-limit and triangulation
decisions are always computed from the audit log.
"""

import hashlib
import json
import logging
from datetime import timedelta
from typing import Any, Optional, Union

import redis.asyncio as redis

from geoshield.core.config import settings
from geoshield.core.metrics import track_cache

logger = logging.getLogger(__name__)


class CacheService:
    """
    Redis-based caching service with support for:
    - Key-value caching with TTL
    - Cache invalidation patterns

    Any Redis error is logged and treated as a miss.
    """

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self._redis: Optional[redis.Redis] = None

    async def get_redis(self) -> redis.Redis:
        """Lazy initialization of Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        try:
            client = await self.get_redis()
            value = await client.get(key)
            if value:
                return json.loads(value)
            return None
        except (redis.RedisError, OSError, ValueError) as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Union[int, timedelta] = 300,
    ) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache (must be JSON serializable)
            ttl: Time to live in seconds or timedelta

        Returns:
            True if successful, False otherwise
        """
        try:
            if isinstance(ttl, timedelta):
                ttl = int(ttl.total_seconds())

            client = await self.get_redis()
            serialized = json.dumps(value, default=str)
            await client.setex(key, ttl, serialized)
            return True
        except (redis.RedisError, OSError, TypeError) as e:
            logger.warning(f"Cache set failed for {key}: {e}")
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching pattern.

        Args:
            pattern: Redis key pattern (e.g., "geocode:*")

        Returns:
            Number of deleted keys
        """
        try:
            client = await self.get_redis()
            keys = []
            async for key in client.scan_iter(match=pattern):
                keys.append(key)

            if keys:
                await client.delete(*keys)
            return len(keys)
        except (redis.RedisError, OSError) as e:
            logger.warning(f"Cache pattern delete failed for {pattern}: {e}")
            return 0

    async def ping(self) -> bool:
        """Check Redis availability."""
        try:
            client = await self.get_redis()
            return bool(await client.ping())
        except (redis.RedisError, OSError):
            return False

    @staticmethod
    def make_key(*args, prefix: str = "cache") -> str:
        """
        Generate cache key from arguments.

        Args:
            *args: Values to include in key
            prefix: Key prefix

        Returns:
            Cache key string
        """
        data = json.dumps(args, sort_keys=True, default=str)
        hash_val = hashlib.md5(data.encode()).hexdigest()[:16]
        return f"{prefix}:{hash_val}"

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None


# Global cache instance
cache = CacheService()


class GeocodingCache:
    """
    Cache for provider geocoding results.

    Addresses rarely move, so entries live for a day by default.
    """

    def __init__(
        self,
        cache_service: Optional[CacheService] = None,
        default_ttl: Optional[int] = None,
    ):
        self.cache = cache_service or cache
        self.ttl = default_ttl or settings.CACHE_TTL_GEOCODING
        self.prefix = "geocode"

    def search_key(self, provider: str, query: str, limit: int, country_code: Optional[str]) -> str:
        normalized = " ".join(query.lower().split())
        return CacheService.make_key(
            provider, normalized, limit, (country_code or "").lower(),
            prefix=f"{self.prefix}:search",
        )

    def reverse_key(self, provider: str, latitude: float, longitude: float) -> str:
        # ~1m precision
        return CacheService.make_key(
            provider, round(latitude, 5), round(longitude, 5),
            prefix=f"{self.prefix}:reverse",
        )

    async def get(self, key: str) -> Optional[Any]:
        value = await self.cache.get(key)
        track_cache("geocoding", value is not None)
        return value

    async def set(self, key: str, value: Any) -> bool:
        return await self.cache.set(key, value, self.ttl)

    async def invalidate(self) -> int:
        return await self.cache.delete_pattern(f"{self.prefix}:*")


class PopularLocationsCache:
    """Cache for location aggregates computed from listed items."""

    def __init__(
        self,
        cache_service: Optional[CacheService] = None,
        popular_ttl: Optional[int] = None,
        suggestions_ttl: Optional[int] = None,
    ):
        self.cache = cache_service or cache
        self.popular_ttl = popular_ttl or settings.CACHE_TTL_POPULAR_LOCATIONS
        self.suggestions_ttl = suggestions_ttl or settings.CACHE_TTL_SUGGESTIONS

    async def get_popular(self, limit: int) -> Optional[list]:
        value = await self.cache.get(f"popular_locations:{limit}")
        track_cache("popular_locations", value is not None)
        return value

    async def set_popular(self, limit: int, locations: list) -> bool:
        return await self.cache.set(f"popular_locations:{limit}", locations, self.popular_ttl)

    def suggestions_key(self, query: str, limit: int) -> str:
        normalized = " ".join(query.lower().split())
        return CacheService.make_key(normalized, limit, prefix="location_suggestions")

    async def get_suggestions(self, query: str, limit: int) -> Optional[list]:
        value = await self.cache.get(self.suggestions_key(query, limit))
        track_cache("location_suggestions", value is not None)
        return value

    async def set_suggestions(self, query: str, limit: int, locations: list) -> bool:
        return await self.cache.set(
            self.suggestions_key(query, limit), locations, self.suggestions_ttl
        )

    async def invalidate(self) -> int:
        deleted = await self.cache.delete_pattern("popular_locations:*")
        deleted += await self.cache.delete_pattern("location_suggestions:*")
        return deleted
