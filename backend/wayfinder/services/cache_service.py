"""Redis cache service for web-search responses."""

import hashlib
import json
import logging
from typing import Any

import redis.asyncio as redis

from wayfinder.config import settings

logger = logging.getLogger(__name__)

# TTLs in seconds
TTL_SEARCH = settings.search_cache_ttl  # 7 days by default


class CacheService:
    """Redis-backed cache. Disables itself when Redis is unreachable."""

    def __init__(self, url: str | None = None):
        self._url = url or settings.redis_url
        self._redis: redis.Redis | None = None
        self._disabled = False

    async def _get_redis(self) -> redis.Redis | None:
        if self._disabled:
            return None
        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    self._url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await self._redis.ping()
            except Exception as e:
                logger.warning(f"Redis unavailable, search cache disabled: {e}")
                self._redis = None
                self._disabled = True
                return None
        return self._redis

    async def get(self, key: str) -> Any | None:
        """Get a value from cache. Returns None on miss or error."""
        try:
            r = await self._get_redis()
            if r is None:
                return None
            raw = await r.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except Exception:
            return None

    async def set(self, key: str, value: Any, ttl: int = TTL_SEARCH) -> bool:
        """Set a value in cache with TTL. Returns False on error."""
        try:
            r = await self._get_redis()
            if r is None:
                return False
            await r.set(key, json.dumps(value, default=str), ex=ttl)
            return True
        except Exception:
            return False

    # Typed helpers

    def search_key(self, query: str, num_results: int) -> str:
        normalized = " ".join(query.lower().split())
        digest = hashlib.sha256(f"{normalized}|{num_results}".encode()).hexdigest()
        return f"search:{digest}"

    async def get_search(self, query: str, num_results: int) -> list[dict] | None:
        return await self.get(self.search_key(query, num_results))

    async def set_search(self, query: str, num_results: int, results: list[dict]):
        await self.set(self.search_key(query, num_results), results, TTL_SEARCH)

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None
