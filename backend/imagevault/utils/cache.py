"""
Simple in-memory cache with TTL
Safe for concurrent use from asyncio tasks
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import asyncio


class SimpleCache:
    """
    In-memory cache with per-entry expiry

    Only suitable for data where serving a stale value for ``ttl_seconds``
    is acceptable.
    """

    def __init__(self, max_entries: int = 10000):
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self.max_entries = max_entries

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if datetime.utcnow() < entry["expires_at"]:
                return entry["value"]
            del self._cache[key]
            return None

    async def set(self, key: str, value: Any, ttl_seconds: float = 5):
        """Set value in cache with TTL"""
        if ttl_seconds <= 0:
            return
        async with self._lock:
            if len(self._cache) >= self.max_entries:
                self._evict_expired()
            if len(self._cache) >= self.max_entries:
                # Still full: drop the oldest insertion
                self._cache.pop(next(iter(self._cache)))
            self._cache[key] = {
                "value": value,
                "expires_at": datetime.utcnow() + timedelta(seconds=ttl_seconds)
            }

    async def delete(self, key: str):
        """Delete key from cache"""
        async with self._lock:
            self._cache.pop(key, None)

    async def clear(self):
        """Clear all cache"""
        async with self._lock:
            self._cache.clear()

    def _evict_expired(self) -> int:
        now = datetime.utcnow()
        expired_keys = [
            key for key, entry in self._cache.items()
            if now >= entry["expires_at"]
        ]
        for key in expired_keys:
            del self._cache[key]
        return len(expired_keys)
