from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
import uuid

from caregiver_agent.domain.errors import ErrorKind, safe_message


class TurnStatus(str, Enum):
    """Conversation turn states"""
    BUILDING_CONTEXT = "building_context"
    MODEL_CALL = "model_call"
    TOOL_CALLS_RECEIVED = "tool_calls_received"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    TURN_LIMIT_REACHED = "turn_limit_reached"
    FAILED = "failed"


class ToolCall(BaseModel):
    """Tool invocation requested by the model"""
    id: str = Field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Outcome of one tool call, returned to the model"""
    call_id: str
    name: str
    result: Optional[Any] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def payload(self) -> Dict[str, Any]:
        """Body sent back to the model"""
        if self.error is not None:
            return {"error": self.error}
        return {"result": self.result}


class ModelResponse(BaseModel):
    """Either final text or a batch of tool calls"""
    text: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)

    @property
    def wants_tools(self) -> bool:
        return len(self.tool_calls) > 0


class TurnSummary(BaseModel):
    """Compact digest persisted alongside a turn"""
    category_counts: Dict[str, int] = Field(default_factory=dict)
    excluded_categories: List[str] = Field(default_factory=list)
    logged_category_count: int = 0
    tools_used: List[str] = Field(default_factory=list)
    status: TurnStatus = TurnStatus.DONE


class ConverseResult(BaseModel):
    """Tagged success/failure result of a conversation turn"""
    success: bool
    reply: Optional[str] = None
    summary: Optional[TurnSummary] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    completed_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def ok(cls, reply: str, summary: TurnSummary) -> "ConverseResult":
        return cls(success=True, reply=reply, summary=summary)

    @classmethod
    def failure(cls, kind: ErrorKind) -> "ConverseResult":
        return cls(success=False, error_kind=kind, message=safe_message(kind))
