from typing import Dict, List, Any, Optional, AsyncIterator
from datetime import datetime
from contextlib import asynccontextmanager
import asyncio
from collections import defaultdict

from caregiver_agent.domain.context.memory.care_store import (
    CareStore,
    ConversationRepository,
    ConversationTransaction,
    EntityLocks,
)
from caregiver_agent.domain.models.care_models import (
    ActivityCategory,
    ActivityRecord,
    ConversationTurn,
    EntityProfile,
    Measurement,
)


def _newest_first(turns: List[ConversationTurn]) -> List[ConversationTurn]:
    # Ties on created_at resolve by insertion order
    indexed = sorted(enumerate(turns), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
    return [turn for _, turn in indexed]


class _StagedTransaction(ConversationTransaction):
    """Works on a copy of one entity's turns; the copy replaces the stored list on commit"""

    def __init__(self, turns: List[ConversationTurn]):
        self.turns = list(turns)

    async def count(self) -> int:
        return len(self.turns)

    async def find_oldest(self) -> Optional[ConversationTurn]:
        if not self.turns:
            return None
        return min(self.turns, key=lambda t: t.created_at)

    async def delete(self, turn_id: str) -> None:
        self.turns = [t for t in self.turns if t.id != turn_id]

    async def insert(self, turn: ConversationTurn) -> None:
        self.turns.append(turn)


class InMemoryCareStore(CareStore, ConversationRepository):
    """Process-local store for care data and conversation turns"""

    def __init__(self):
        self.profiles: Dict[str, EntityProfile] = {}
        self.settings: Dict[str, Dict[str, Any]] = {}
        self.activities: Dict[str, List[ActivityRecord]] = defaultdict(list)
        self.measurements: Dict[str, List[Measurement]] = defaultdict(list)
        self.conversations: Dict[str, List[ConversationTurn]] = defaultdict(list)
        self._lock = asyncio.Lock()
        self._entity_locks = EntityLocks()

    # Seeding

    async def add_profile(self, profile: EntityProfile):
        async with self._lock:
            self.profiles[profile.id] = profile

    async def save_category_settings(self, entity_id: str, saved: Dict[str, Any]):
        async with self._lock:
            self.settings[entity_id] = dict(saved)

    async def add_activity(self, record: ActivityRecord):
        """Store an activity; callers must invalidate the entity's context cache"""

        async with self._lock:
            self.activities[record.entity_id].append(record)

    async def add_measurement(self, measurement: Measurement):
        async with self._lock:
            self.measurements[measurement.entity_id].append(measurement)

    # CareStore

    async def get_profile(self, entity_id: str) -> Optional[EntityProfile]:
        async with self._lock:
            return self.profiles.get(entity_id)

    async def get_category_settings(self, entity_id: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            saved = self.settings.get(entity_id)
            return dict(saved) if saved is not None else None

    async def list_activities(
        self,
        entity_id: str,
        categories: List[ActivityCategory],
        since: datetime,
        until: Optional[datetime] = None
    ) -> List[ActivityRecord]:
        wanted = set(categories)

        async with self._lock:
            records = [
                r for r in self.activities.get(entity_id, [])
                if r.category in wanted
                and r.start_time >= since
                and (until is None or r.start_time < until)
            ]

        return sorted(records, key=lambda r: r.start_time)

    async def list_measurements(self, entity_id: str) -> List[Measurement]:
        async with self._lock:
            return sorted(self.measurements.get(entity_id, []), key=lambda m: m.measured_at)

    # ConversationRepository

    @asynccontextmanager
    async def transaction(self, entity_id: str) -> AsyncIterator[ConversationTransaction]:
        async with self._entity_locks[entity_id]:
            async with self._lock:
                staged = _StagedTransaction(self.conversations.get(entity_id, []))

            yield staged

            async with self._lock:
                self.conversations[entity_id] = staged.turns

    async def find_recent(self, entity_id: str, limit: int) -> List[ConversationTurn]:
        async with self._lock:
            turns = list(self.conversations.get(entity_id, []))

        return _newest_first(turns)[:limit]

    async def find_by_keyword(self, entity_id: str, keyword: str, limit: int) -> List[ConversationTurn]:
        needle = keyword.lower()

        async with self._lock:
            turns = [
                t for t in self.conversations.get(entity_id, [])
                if needle in t.message.lower() or needle in t.reply.lower()
            ]

        return _newest_first(turns)[:limit]

