"""
Store boundaries used by the conversation engine.

CareStore is read-only access to profiles, settings, activities and
measurements. ConversationRepository persists conversation turns; its
``transaction`` serializes writers for one entity.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncContextManager, Dict, List, Optional
from datetime import datetime
import asyncio
import weakref

from caregiver_agent.domain.models.care_models import (
    ActivityCategory,
    ActivityRecord,
    ConversationTurn,
    EntityProfile,
    Measurement,
)


class CareStore(ABC):
    """Read access to an entity's care data"""

    @abstractmethod
    async def get_profile(self, entity_id: str) -> Optional[EntityProfile]:
        pass

    @abstractmethod
    async def get_category_settings(self, entity_id: str) -> Optional[Dict[str, Any]]:
        """Saved per-entity AI settings, or None when never saved"""
        pass

    @abstractmethod
    async def list_activities(
        self,
        entity_id: str,
        categories: List[ActivityCategory],
        since: datetime,
        until: Optional[datetime] = None
    ) -> List[ActivityRecord]:
        """Records of the given categories starting in [since, until), oldest first"""
        pass

    @abstractmethod
    async def list_measurements(self, entity_id: str) -> List[Measurement]:
        pass


class ConversationTransaction(ABC):
    """Operations available inside one per-entity write transaction"""

    @abstractmethod
    async def count(self) -> int:
        pass

    @abstractmethod
    async def find_oldest(self) -> Optional[ConversationTurn]:
        pass

    @abstractmethod
    async def delete(self, turn_id: str) -> None:
        pass

    @abstractmethod
    async def insert(self, turn: ConversationTurn) -> None:
        pass


class ConversationRepository(ABC):
    """Persistence of conversation turns"""

    @abstractmethod
    def transaction(self, entity_id: str) -> AsyncContextManager[ConversationTransaction]:
        """Open a transaction scoped to one entity.

        Changes are committed when the block exits normally and discarded
        when it raises. Concurrent transactions for the same entity run one
        after another.
        """
        pass

    @abstractmethod
    async def find_recent(self, entity_id: str, limit: int) -> List[ConversationTurn]:
        """Newest first"""
        pass

    @abstractmethod
    async def find_by_keyword(self, entity_id: str, keyword: str, limit: int) -> List[ConversationTurn]:
        """Case-insensitive match on message or reply, newest first"""
        pass


class EntityLocks:
    """Per-entity asyncio locks that disappear once nothing holds or awaits them"""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def __getitem__(self, entity_id: str) -> asyncio.Lock:
        lock = self._locks.get(entity_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[entity_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)
