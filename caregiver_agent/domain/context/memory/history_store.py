from typing import Dict, Any, List, Optional, Callable
from datetime import datetime

import structlog

from caregiver_agent.domain.context.memory.care_store import ConversationRepository
from caregiver_agent.domain.errors import PersistenceError
from caregiver_agent.domain.models.care_models import ConversationTurn

logger = structlog.get_logger(__name__)

MIN_RECENT = 1
MAX_RECENT = 10


def time_ago(created_at: datetime, now: datetime) -> str:
    """Coarse elapsed-time label, e.g. '3 minutes ago'"""

    seconds = int((now - created_at).total_seconds())
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    if days < 7:
        return f"{days} day{'s' if days != 1 else ''} ago"
    return created_at.strftime("%b %d").replace(" 0", " ")


class HistoryStore:
    """Size-bounded conversation history per entity"""

    def __init__(
        self,
        repository: ConversationRepository,
        max_history: int = 20,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.repository = repository
        self.max_history = max_history
        self._clock = clock or datetime.utcnow

    async def append(
        self,
        entity_id: str,
        user_id: str,
        message: str,
        reply: str,
        summary: Dict[str, Any]
    ) -> ConversationTurn:
        """Persist a turn, evicting the single oldest when at capacity.

        Count, eviction and insert run in one transaction so concurrent
        appends for the same entity never leave more than max_history turns.
        """

        turn = ConversationTurn(
            entity_id=entity_id,
            user_id=user_id,
            message=message,
            reply=reply,
            summary=summary,
            created_at=self._clock()
        )

        try:
            async with self.repository.transaction(entity_id) as tx:
                count = await tx.count()
                if count >= self.max_history:
                    oldest = await tx.find_oldest()
                    if oldest is not None:
                        await tx.delete(oldest.id)
                        logger.debug("Evicted oldest turn", entity_id=entity_id, turn_id=oldest.id)
                await tx.insert(turn)
        except PersistenceError:
            raise
        except Exception as e:
            logger.error("Failed to persist conversation turn", entity_id=entity_id, error=str(e))
            raise PersistenceError(f"Could not save conversation turn: {e}") from e

        return turn

    async def recent(
        self,
        entity_id: str,
        count: int = 3,
        search_keyword: Optional[str] = None
    ) -> List[ConversationTurn]:
        """Up to count turns, oldest first; count is clamped to [1, 10]"""

        limit = min(max(MIN_RECENT, count), MAX_RECENT)
        keyword = (search_keyword or "").strip()

        if keyword:
            turns = await self.repository.find_by_keyword(entity_id, keyword, limit)
        else:
            turns = await self.repository.find_recent(entity_id, limit)

        return list(reversed(turns))

    async def lookup(
        self,
        entity_id: str,
        count: int = 3,
        search_keyword: Optional[str] = None
    ) -> Dict[str, Any]:
        """Past conversations shaped for the getChatHistory tool"""

        turns = await self.recent(entity_id, count, search_keyword)
        now = self._clock()

        if not turns:
            message = (
                f'No conversations found about "{search_keyword}".'
                if search_keyword else "No previous conversations."
            )
            return {"conversations": [], "totalFound": 0, "message": message}

        conversations = [
            {
                "timeAgo": time_ago(t.created_at, now),
                "userMessage": t.message,
                "aiReply": t.reply,
            }
            for t in turns
        ]
        message = (
            f'Found {len(turns)} conversations about "{search_keyword}".'
            if search_keyword else f"{len(turns)} most recent conversations."
        )
        return {"conversations": conversations, "totalFound": len(turns), "message": message}
