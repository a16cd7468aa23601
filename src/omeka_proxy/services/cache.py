"""CacheStore - the shared Redis key-value store behind every read path.

The store is a pure memoization layer: values go in as JSON and come back
byte-identical, each key carries its own TTL, and nothing here ever mutates a
cached value in place. Callers read, transform, and write whole values.

Redis is the only shared mutable resource in the proxy and the sole
coordination point between components. A connection or decoding failure is
logged and reported as a miss, so an unhealthy Redis degrades to "always go
upstream" instead of failing requests.

Cache Key Types:
    - allItems - Full mirror of the upstream item collection (6h TTL)
    - filters / counts / creators - Facets derived from the mirror (24h TTL)
    - featured / heroes - Configured item sets (24h / 7d TTL)
    - item:{id} / item:details:{id} - Single item and its media (12h TTL)
    - query:{canonical} - Query results (12h TTL)
    - page:{slug}-{lang} - Site pages (24h TTL)
    - omeka:{path}?{query} - Raw pass-through responses (1h TTL)

Key names are part of the operational contract: the invalidation loop and
the ``/flush`` admin route address entries by these names.
"""

import json
from typing import Any

import structlog
from redis.asyncio import Redis

logger = structlog.get_logger(__name__)


class CacheStore:
    """Redis-backed JSON cache with per-key TTL.

    Usage:
        ```python
        cache = CacheStore(Redis.from_url(settings.redis_url))
        filters = await cache.get(CacheStore.FILTERS)
        if filters is None:
            filters = await cache.set(CacheStore.FILTERS, CacheStore.TTL_FILTERS, build())
        ```
    """

    # TTL constants (in seconds)
    TTL_ALL_ITEMS = 21600  # 6 hours
    TTL_FILTERS = 86400  # 24 hours
    TTL_COUNTS = 86400  # 24 hours
    TTL_CREATORS = 86400  # 24 hours
    TTL_FEATURED = 86400  # 24 hours
    TTL_HEROES = 604800  # 7 days
    TTL_ITEM = 43200  # 12 hours
    TTL_QUERY = 43200  # 12 hours
    TTL_PAGE = 86400  # 24 hours
    TTL_PASSTHROUGH = 3600  # 1 hour

    # Fixed keys
    ALL_ITEMS = "allItems"
    FILTERS = "filters"
    COUNTS = "counts"
    CREATORS = "creators"
    FEATURED = "featured"
    HEROES = "heroes"

    def __init__(self, redis: Redis) -> None:
        """Initialize the cache store.

        Args:
            redis: Async Redis client
        """
        self.redis = redis

    async def get(self, key: str) -> Any | None:
        """Read a cached value.

        Returns:
            The decoded value, or None on a miss, a Redis failure, or a value
            that cannot be decoded.
        """
        try:
            result = await self.redis.get(key)
        except Exception as e:
            logger.warning("cache_get_failed", cache_key=key, error=str(e))
            return None

        if result is None:
            return None

        try:
            return json.loads(result)
        except (TypeError, ValueError) as e:
            logger.warning("cache_decode_failed", cache_key=key, error=str(e))
            return None

    async def set(self, key: str, ttl: int, value: Any) -> Any:
        """Write a value with an explicit TTL and hand it back.

        Returning the value lets callers finish with
        ``return await cache.set(key, ttl, result)``.

        Args:
            key: Cache key
            ttl: Time to live in seconds
            value: JSON-serializable value
        """
        try:
            await self.redis.setex(key, ttl, json.dumps(value, ensure_ascii=False))
            logger.debug("cache_set", cache_key=key, ttl=ttl)
        except Exception as e:
            logger.warning("cache_set_failed", cache_key=key, error=str(e))
        return value

    async def delete(self, key: str) -> None:
        """Delete a specific cache key.

        Args:
            key: Key to delete
        """
        try:
            await self.redis.delete(key)
            logger.debug("cache_deleted", cache_key=key)
        except Exception as e:
            logger.warning("cache_delete_failed", cache_key=key, error=str(e))

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern.

        Args:
            pattern: Redis glob pattern (e.g., "query:page=1&per_page=20&*")

        Returns:
            Number of keys deleted
        """
        try:
            count = 0
            async for key in self.redis.scan_iter(match=pattern):
                await self.redis.delete(key)
                count += 1
            logger.debug("cache_pattern_deleted", pattern=pattern, count=count)
            return count
        except Exception as e:
            logger.warning("cache_pattern_delete_failed", pattern=pattern, error=str(e))
            return 0

    async def ttl(self, key: str) -> int:
        """Remaining lifetime of a key in seconds.

        Follows Redis semantics: -2 when the key does not exist, -1 when it
        has no expiry. A Redis failure also reports -2.
        """
        try:
            return int(await self.redis.ttl(key))
        except Exception as e:
            logger.warning("cache_ttl_failed", cache_key=key, error=str(e))
            return -2

    async def flush_all(self) -> None:
        """Drop every key in the database."""
        await self.redis.flushall()
        logger.info("cache_flushed")

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        try:
            return bool(await self.redis.ping())
        except Exception as e:
            logger.warning("cache_ping_failed", error=str(e))
            return False

    # -------------------------------------------------------------------------
    # Cache Key Generators
    # -------------------------------------------------------------------------

    @staticmethod
    def item_key(item_id: int | str) -> str:
        """Cache key for a normalized item (e.g., "item:42")."""
        return f"item:{item_id}"

    @staticmethod
    def item_details_key(item_id: int | str) -> str:
        """Cache key for an item's media details (e.g., "item:details:42")."""
        return f"item:details:{item_id}"

    @staticmethod
    def query_key(canonical: str) -> str:
        """Cache key for a query result.

        Args:
            canonical: Canonical query string; equal filter sets must already
                produce equal strings.
        """
        return f"query:{canonical}"

    @staticmethod
    def page_key(slug: str, lang: str) -> str:
        """Cache key for a localized site page (e.g., "page:about-en")."""
        return f"page:{slug}-{lang}"

    @staticmethod
    def passthrough_key(path: str, query: str = "") -> str:
        """Cache key for a raw pass-through response."""
        return f"omeka:{path}?{query}"
