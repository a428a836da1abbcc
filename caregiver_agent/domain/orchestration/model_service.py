from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import asyncio

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage

from caregiver_agent.domain.errors import TransientModelError
from caregiver_agent.domain.models.agent_state import ModelResponse, ToolCall

logger = structlog.get_logger(__name__)

_TRANSIENT_STATUS = {408, 429, 500, 502, 503, 504}
_TRANSIENT_HINTS = ("overloaded", "unavailable", "503", "timeout", "timed out", "rate limit", "resource exhausted")


class ModelService(ABC):
    """Generative model boundary: one request, either text or tool calls back"""

    @abstractmethod
    async def send(self, messages: List[BaseMessage], tools: List[Dict[str, Any]]) -> ModelResponse:
        """Send the conversation so far; raise TransientModelError on retryable failures"""
        pass


def _status_code(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "code", "http_status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_transient(error: BaseException) -> bool:
    """Network, timeout, throttling and 5xx failures are worth retrying"""

    if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
        return True
    status = _status_code(error)
    if status is not None:
        return status in _TRANSIENT_STATUS or status >= 500
    text = str(error).lower()
    return any(hint in text for hint in _TRANSIENT_HINTS)


def _text_of(message: AIMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


class LangChainModelService(ModelService):
    """Adapts any langchain-core chat model that supports tool binding"""

    def __init__(self, chat_model: BaseChatModel):
        self.chat_model = chat_model

    async def send(self, messages: List[BaseMessage], tools: List[Dict[str, Any]]) -> ModelResponse:
        model = self.chat_model.bind_tools(tools) if tools else self.chat_model

        try:
            reply = await model.ainvoke(messages)
        except Exception as e:
            if is_transient(e):
                raise TransientModelError(str(e), status_code=_status_code(e)) from e
            raise

        tool_calls = []
        for call in getattr(reply, "tool_calls", None) or []:
            tool_call = ToolCall(name=call["name"], arguments=call.get("args") or {})
            if call.get("id"):
                tool_call.id = call["id"]
            tool_calls.append(tool_call)

        return ModelResponse(text=_text_of(reply), tool_calls=tool_calls)


def create_model_service(model_name: str, model_provider: str, temperature: float = 0.3) -> LangChainModelService:
    """Model service for a provider supported by langchain's init_chat_model"""

    from langchain.chat_models import init_chat_model

    chat_model = init_chat_model(model_name, model_provider=model_provider, temperature=temperature)
    logger.info("Chat model initialized", model=model_name, provider=model_provider)
    return LangChainModelService(chat_model)
