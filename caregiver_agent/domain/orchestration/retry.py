from typing import Awaitable, Callable, Optional, TypeVar
import asyncio

import structlog

from caregiver_agent.domain.errors import ModelUnavailableError, TransientModelError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Exponential backoff for transient model failures.

    One initial attempt plus up to ``max_retries`` retries. Retry n waits
    ``base_delay * 2 ** (n - 1)`` seconds first (1s, 2s, 4s by default).
    Only TransientModelError is retried; anything else propagates at once.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        self.max_retries = max(0, max_retries)
        self.base_delay = base_delay
        self._sleep = sleep or asyncio.sleep

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry: int) -> float:
        """Seconds to wait before the given retry (1-based)"""
        return self.base_delay * (2 ** (retry - 1))

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        last_error = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except TransientModelError as e:
                last_error = e
                if attempt == self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                logger.warning(
                    "Transient model failure, retrying",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay_seconds=delay,
                    error=e.message
                )
                await self._sleep(delay)

        logger.error("Model call failed after retries", attempts=self.max_attempts)
        raise ModelUnavailableError(self.max_attempts, last_error)
