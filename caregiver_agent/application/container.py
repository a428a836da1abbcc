"""
Wiring of the conversation engine from settings.

Clients (database engine, Redis connection, chat model) are created once per
process and injected; nothing below relies on module-level singletons.
"""

from typing import Optional
from dataclasses import dataclass

import structlog

from caregiver_agent.domain.context.context_manager import ContextAssembler
from caregiver_agent.domain.context.guidelines import GuidelineProvider
from caregiver_agent.domain.context.memory.cache_memory_store import CacheMemoryStore
from caregiver_agent.domain.context.memory.context_cache import ContextCache
from caregiver_agent.domain.context.memory.history_store import HistoryStore
from caregiver_agent.domain.context.memory.runtime_memory import InMemoryCareStore
from caregiver_agent.domain.orchestration.core.main_agent import ConversationOrchestrator
from caregiver_agent.domain.orchestration.model_service import ModelService, create_model_service
from caregiver_agent.domain.orchestration.retry import RetryPolicy
from caregiver_agent.domain.tool.catalog import build_tool_registry
from caregiver_agent.domain.tool.tool_executor import ToolExecutor
from caregiver_agent.infrastructure.cache.redis_cache_store import RedisCacheStore
from caregiver_agent.infrastructure.config.settings import Settings
from caregiver_agent.infrastructure.persistence.sql_store import SqlCareStore
from caregiver_agent.infrastructure.rate_limit.rate_limiter import AllowAllRateLimiter, SlidingWindowRateLimiter

logger = structlog.get_logger(__name__)


@dataclass
class Container:
    store: object
    cache: ContextCache
    history: HistoryStore
    orchestrator: ConversationOrchestrator
    cache_backend: object

    async def close(self):
        if isinstance(self.cache_backend, RedisCacheStore):
            await self.cache_backend.close()
        if isinstance(self.store, SqlCareStore):
            await self.store.close()


def build_container(
    settings: Settings,
    store=None,
    cache_backend=None,
    model: Optional[ModelService] = None
) -> Container:
    """Assemble the engine; any collaborator can be passed in to override the default"""

    if store is None:
        if settings.DATABASE_URL.startswith("memory://"):
            store = InMemoryCareStore()
        else:
            store = SqlCareStore.from_url(settings.DATABASE_URL)

    if cache_backend is None:
        cache_backend = RedisCacheStore.from_url(settings.REDIS_URL) if settings.REDIS_URL else CacheMemoryStore()

    if model is None:
        model = create_model_service(settings.MODEL_NAME, settings.MODEL_PROVIDER, settings.MODEL_TEMPERATURE)

    cache = ContextCache(cache_backend)
    guidelines = GuidelineProvider()
    history = HistoryStore(store, max_history=settings.MAX_HISTORY)

    assembler = ContextAssembler(
        store,
        cache,
        guidelines,
        lookback_days=settings.ACTIVITY_LOOKBACK_DAYS,
        month_lookback_days=settings.MONTH_LOOKBACK_DAYS,
        cache_ttl_seconds=settings.CONTEXT_CACHE_TTL_SECONDS,
        default_history_count=settings.DEFAULT_HISTORY_COUNT,
        health_history_count=settings.HEALTH_HISTORY_COUNT,
    )

    if settings.RATE_LIMIT_ENABLED:
        rate_limiter = SlidingWindowRateLimiter(settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS)
    else:
        rate_limiter = AllowAllRateLimiter()

    orchestrator = ConversationOrchestrator(
        store=store,
        assembler=assembler,
        history=history,
        executor=ToolExecutor(build_tool_registry(store, history, guidelines)),
        model=model,
        retry_policy=RetryPolicy(settings.MAX_RETRIES, settings.RETRY_BASE_DELAY_SECONDS),
        rate_limiter=rate_limiter,
        max_tool_turns=settings.MAX_TOOL_TURNS,
    )

    logger.info(
        "Conversation engine assembled",
        store=type(store).__name__,
        cache=type(cache_backend).__name__,
        rate_limited=settings.RATE_LIMIT_ENABLED,
    )
    return Container(store=store, cache=cache, history=history, orchestrator=orchestrator, cache_backend=cache_backend)
