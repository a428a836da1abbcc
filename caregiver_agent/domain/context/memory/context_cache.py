from typing import Any, Awaitable, Callable, Optional, Protocol
import json

import structlog

logger = structlog.get_logger(__name__)


class CacheBackend(Protocol):
    """Key-value cache boundary"""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int = 300) -> None: ...

    async def delete_by_prefix(self, prefix: str) -> int: ...


def entity_prefix(entity_id: str) -> str:
    """Key prefix shared by every cache entry of one entity"""
    return f"entity:{entity_id}:"


def recent_activities_key(entity_id: str, days: int, category: str) -> str:
    return f"{entity_prefix(entity_id)}recent-activities:{days}-days:{category}"


class ContextCache:
    """Read-through cache for expensive context lookups.

    Values are JSON-serialized. Any backend failure is logged and bypassed so
    that cache trouble never blocks a conversation turn.
    """

    def __init__(self, backend: CacheBackend):
        self.backend = backend

    async def get_or_compute(
        self,
        key: str,
        ttl_seconds: int,
        compute: Callable[[], Awaitable[Any]]
    ) -> Any:
        """Return the cached value for key, computing and storing it on a miss"""

        try:
            cached = await self.backend.get(key)
        except Exception as e:
            logger.warning("Cache read failed, computing directly", key=key, error=str(e))
            return await compute()

        if cached is not None:
            try:
                value = json.loads(cached)
                logger.debug("Cache hit", key=key)
                return value
            except ValueError:
                logger.warning("Discarding undecodable cache entry", key=key)

        value = await compute()

        try:
            await self.backend.set(key, json.dumps(value, default=str), ttl_seconds)
        except Exception as e:
            logger.warning("Cache write failed", key=key, error=str(e))

        return value

    async def invalidate(self, key_prefix: str) -> int:
        """Remove every entry under key_prefix"""

        try:
            removed = await self.backend.delete_by_prefix(key_prefix)
        except Exception as e:
            logger.warning("Cache invalidation failed", prefix=key_prefix, error=str(e))
            return 0

        logger.info("Cache invalidated", prefix=key_prefix, removed=removed)
        return removed

    async def invalidate_entity(self, entity_id: str) -> int:
        """Call after any activity write for the entity"""
        return await self.invalidate(entity_prefix(entity_id))
