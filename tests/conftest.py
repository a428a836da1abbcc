"""Shared fixtures for the conversation engine tests."""

from datetime import date, datetime
from typing import Any, Dict, List, Union

import pytest
from langfuse.decorators import langfuse_context

from caregiver_agent.domain.context.context_manager import ContextAssembler
from caregiver_agent.domain.context.memory.cache_memory_store import CacheMemoryStore
from caregiver_agent.domain.context.memory.context_cache import ContextCache
from caregiver_agent.domain.context.memory.history_store import HistoryStore
from caregiver_agent.domain.context.memory.runtime_memory import InMemoryCareStore
from caregiver_agent.domain.models.agent_state import ModelResponse, ToolCall
from caregiver_agent.domain.models.care_models import ActivityCategory, ActivityRecord, EntityProfile
from caregiver_agent.domain.orchestration.model_service import ModelService

# Thursday; the week starts Monday 2024-12-02
NOW = datetime(2024, 12, 5, 14, 0)
ENTITY_ID = "baby-1"
USER_ID = "user-1"


def fixed_clock() -> datetime:
    return NOW


class ScriptedModel(ModelService):
    """Model fake that replays a fixed script of responses or errors"""

    def __init__(self, steps: List[Union[ModelResponse, Exception]]):
        self.steps = list(steps)
        self.calls: List[List[Any]] = []
        self.tools_seen: List[List[Dict[str, Any]]] = []

    async def send(self, messages, tools) -> ModelResponse:
        self.calls.append(list(messages))
        self.tools_seen.append(tools)
        if not self.steps:
            raise AssertionError("Model called more often than scripted")
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


def text(reply: str) -> ModelResponse:
    return ModelResponse(text=reply)


def tool_request(name: str, **arguments) -> ModelResponse:
    return ModelResponse(tool_calls=[ToolCall(name=name, arguments=arguments)])


@pytest.fixture(autouse=True, scope="session")
def disable_tracing():
    langfuse_context.configure(enabled=False)


@pytest.fixture
def profile() -> EntityProfile:
    return EntityProfile(
        id=ENTITY_ID,
        name="Mina",
        birth_date=date(2024, 8, 1),
        sex="female",
        group_id="family-1",
    )


@pytest.fixture
def store(profile: EntityProfile) -> InMemoryCareStore:
    store = InMemoryCareStore()
    store.profiles[profile.id] = profile
    return store


@pytest.fixture
def add_record(store: InMemoryCareStore):
    """Insert an activity record directly into the in-memory store"""

    def _add(category: ActivityCategory, start: datetime, **fields) -> ActivityRecord:
        record = ActivityRecord(entity_id=ENTITY_ID, category=category, start_time=start, **fields)
        store.activities[ENTITY_ID].append(record)
        return record

    return _add


@pytest.fixture
def cache_backend() -> CacheMemoryStore:
    return CacheMemoryStore(clock=fixed_clock)


@pytest.fixture
def context_cache(cache_backend: CacheMemoryStore) -> ContextCache:
    return ContextCache(cache_backend)


@pytest.fixture
def history(store: InMemoryCareStore) -> HistoryStore:
    return HistoryStore(store, max_history=20, clock=fixed_clock)


@pytest.fixture
def assembler(store: InMemoryCareStore, context_cache: ContextCache) -> ContextAssembler:
    return ContextAssembler(store, context_cache, clock=fixed_clock)
