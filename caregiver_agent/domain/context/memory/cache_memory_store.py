from typing import Callable, Dict, Any, Optional
import asyncio
from datetime import datetime, timedelta


class CacheMemoryStore:
    """In-memory key-value cache with TTL support"""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.cache: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock or datetime.utcnow

    async def set(self, key: str, value: str, ttl_seconds: int = 300) -> None:
        """Set a value in cache with TTL, dropping whatever has already expired"""

        async with self._lock:
            now = self._clock()
            self._evict_expired(now)

            self.cache[key] = {
                "value": value,
                "expires_at": now + timedelta(seconds=ttl_seconds)
            }

    async def get(self, key: str) -> Optional[str]:
        """Get value from cache if not expired"""

        async with self._lock:
            entry = self.cache.get(key)
            if entry is None:
                return None

            # An entry is stale from the instant its TTL elapses
            if self._clock() >= entry["expires_at"]:
                del self.cache[key]
                return None

            return entry["value"]

    async def delete_by_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix and return the count"""

        async with self._lock:
            doomed = [key for key in self.cache if key.startswith(prefix)]
            for key in doomed:
                del self.cache[key]
            return len(doomed)

    def _evict_expired(self, now: datetime) -> int:
        expired_keys = [
            key for key, entry in self.cache.items()
            if now >= entry["expires_at"]
        ]

        for key in expired_keys:
            del self.cache[key]

        return len(expired_keys)
