from typing import Optional
import re

import structlog
import redis.asyncio as redis

logger = structlog.get_logger(__name__)

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


def escape_glob(text: str) -> str:
    """Escape Redis MATCH pattern metacharacters so text matches literally"""
    return _GLOB_SPECIAL.sub(r"\\\1", text)


class RedisCacheStore:
    """Cache backend on Redis; TTL is enforced by Redis key expiry"""

    def __init__(self, client: redis.Redis, scan_batch: int = 200):
        self.client = client
        self.scan_batch = scan_batch

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        return cls(redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        value = await self.client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int = 300) -> None:
        await self.client.set(key, value, ex=ttl_seconds)

    async def delete_by_prefix(self, prefix: str) -> int:
        """Delete every key under prefix using SCAN (never KEYS)"""

        deleted = 0
        batch = []
        async for key in self.client.scan_iter(match=f"{escape_glob(prefix)}*", count=self.scan_batch):
            batch.append(key)
            if len(batch) >= self.scan_batch:
                deleted += await self.client.delete(*batch)
                batch = []
        if batch:
            deleted += await self.client.delete(*batch)

        logger.debug("Deleted cache keys", prefix=prefix, deleted=deleted)
        return deleted

    async def close(self) -> None:
        await self.client.aclose()
