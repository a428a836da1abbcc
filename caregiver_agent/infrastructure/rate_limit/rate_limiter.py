from typing import Callable, Dict, List, Optional
import asyncio
import time

import structlog

logger = structlog.get_logger(__name__)


class SlidingWindowRateLimiter:
    """Per-user sliding window limiter kept in process memory.

    Not shared between workers; a multi-process deployment needs a shared
    backend such as Redis.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60,
        clock: Optional[Callable[[], float]] = None
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock or time.monotonic
        self._requests: Dict[str, List[float]] = {}
        self._lock = asyncio.Lock()

    async def allow(self, user_id: str) -> bool:
        """Record a request and report whether it is within the limit"""

        async with self._lock:
            now = self._clock()
            window_start = now - self.window_seconds
            self._forget_idle(window_start)

            recent = [ts for ts in self._requests.get(user_id, []) if ts > window_start]
            if len(recent) < self.max_requests:
                recent.append(now)
                self._requests[user_id] = recent
                return True

            self._requests[user_id] = recent
            logger.warning("Rate limit exceeded", user_id=user_id, limit=self.max_requests)
            return False

    async def retry_after(self, user_id: str) -> int:
        """Seconds until the next request will be accepted"""

        async with self._lock:
            timestamps = self._requests.get(user_id)
            if not timestamps:
                return 0
            remaining = min(timestamps) + self.window_seconds - self._clock()
            return max(0, int(remaining))

    async def reset(self, user_id: str):
        async with self._lock:
            self._requests.pop(user_id, None)

    def _forget_idle(self, window_start: float) -> None:
        # Timestamps are appended in order, so the last one is the newest
        idle = [
            uid for uid, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for uid in idle:
            del self._requests[uid]


class AllowAllRateLimiter:
    """Limiter used when rate limiting is disabled"""

    async def allow(self, user_id: str) -> bool:
        return True

    async def retry_after(self, user_id: str) -> int:
        return 0
