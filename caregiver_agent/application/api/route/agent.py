from typing import Annotated, Any, Dict, Optional
import asyncio

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from caregiver_agent.domain.context.memory.context_cache import ContextCache
from caregiver_agent.domain.context.memory.history_store import HistoryStore
from caregiver_agent.domain.errors import ErrorKind
from caregiver_agent.domain.orchestration.core.main_agent import ConversationOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/entities/{entity_id}", tags=["chat"])

_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.MODEL_UNAVAILABLE: 503,
    ErrorKind.PERSISTENCE: 500,
    ErrorKind.CANCELLED: 409,
    ErrorKind.INTERNAL: 500,
}


class ChatRequest(BaseModel):
    user_id: str = Field(min_length=1)
    message: str = Field(min_length=1, max_length=4000)


def get_orchestrator(request: Request) -> ConversationOrchestrator:
    return request.app.state.orchestrator


def get_history(request: Request) -> HistoryStore:
    return request.app.state.history


def get_cache(request: Request) -> ContextCache:
    return request.app.state.cache


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event, interval: float = 0.5):
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling turn")
            cancel_event.set()
            return
        await asyncio.sleep(interval)


@router.post("/chat")
async def chat_endpoint(
    entity_id: str,
    body: ChatRequest,
    request: Request,
    orchestrator: Annotated[ConversationOrchestrator, Depends(get_orchestrator)]
):
    """Answer one caregiver question about the entity"""

    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        result = await orchestrator.converse(entity_id, body.user_id, body.message, cancel_event=cancel_event)
    finally:
        watcher.cancel()

    status_code = 200 if result.success else _STATUS_BY_KIND.get(result.error_kind, 500)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


@router.get("/chat/history")
async def history_endpoint(
    entity_id: str,
    history: Annotated[HistoryStore, Depends(get_history)],
    count: int = Query(3),
    search: Optional[str] = Query(None, max_length=100)
) -> Dict[str, Any]:
    """Recent conversation turns, oldest first"""

    return await history.lookup(entity_id, count=count, search_keyword=search)


@router.post("/context/invalidate")
async def invalidate_context(
    entity_id: str,
    cache: Annotated[ContextCache, Depends(get_cache)]
) -> Dict[str, Any]:
    """Drop cached context after activity records change"""

    removed = await cache.invalidate_entity(entity_id)
    return {"entity_id": entity_id, "removed": removed}
