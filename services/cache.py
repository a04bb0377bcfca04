# services/cache.py - Key-value stores with per-entry TTL
import json
import logging
import time
from typing import Any, Optional

from settings import get_settings

logger = logging.getLogger(__name__)


class SimpleCache:
    """Simple in-memory cache with TTL (time-to-live)"""

    def __init__(self):
        self._cache = {}

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired"""
        if key in self._cache:
            value, expires_at = self._cache[key]
            if time.time() < expires_at:
                return value
            else:
                del self._cache[key]
        return None

    def set(self, key: str, value: Any, ttl_seconds: int = 300):
        """Set value in cache with TTL (default 5 minutes)"""
        expires_at = time.time() + ttl_seconds
        self._cache[key] = (value, expires_at)

    def pop(self, key: str) -> Optional[Any]:
        """Remove and return a value if it has not expired"""
        entry = self._cache.pop(key, None)
        if entry is None:
            return None
        value, expires_at = entry
        if time.time() < expires_at:
            return value
        return None

    def purge_expired(self) -> int:
        """Drop expired entries, returning how many were removed"""
        now = time.time()
        expired = [key for key, (_, expires_at) in self._cache.items() if expires_at <= now]
        for key in expired:
            del self._cache[key]
        return len(expired)

    def clear(self):
        """Clear all cached values"""
        self._cache = {}


class RedisCache:
    """Same interface as SimpleCache, shared across processes through Redis"""

    def __init__(self, url: str):
        import redis

        self._client = redis.from_url(url, decode_responses=True)

    def get(self, key: str) -> Optional[Any]:
        raw = self._client.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any, ttl_seconds: int = 300):
        self._client.set(key, json.dumps(value), ex=ttl_seconds)

    def pop(self, key: str) -> Optional[Any]:
        # GETDEL makes single-use consumption atomic across instances
        raw = self._client.getdel(key)
        return json.loads(raw) if raw is not None else None

    def purge_expired(self) -> int:
        # Redis expires keys on its own
        return 0

    def clear(self):
        for key in self._client.scan_iter("oauth_state:*"):
            self._client.delete(key)


_store = None


def get_store():
    """Return the process-wide key-value store, Redis-backed when configured"""
    global _store
    if _store is None:
        redis_url = get_settings().REDIS_URL
        if redis_url:
            logger.info("Using Redis key-value store")
            _store = RedisCache(redis_url)
        else:
            _store = SimpleCache()
    return _store
