from typing import Dict, Any, Optional
from enum import Enum


class ErrorKind(str, Enum):
    """Failure tags returned to callers of a conversation turn"""
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    MODEL_UNAVAILABLE = "model_unavailable"
    PERSISTENCE = "persistence"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class CareAgentError(Exception):
    """Base exception for conversation engine errors"""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, code: str = "care_agent_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class NotFoundError(CareAgentError):
    """Entity profile (or other required record) does not exist"""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            f"{resource} not found: {resource_id}",
            code="not_found",
            details={"resource": resource, "resource_id": resource_id}
        )


class TransientModelError(CareAgentError):
    """Network or 5xx failure from the model service; safe to retry"""

    kind = ErrorKind.MODEL_UNAVAILABLE

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, code="transient_model_error", details={"status_code": status_code})
        self.status_code = status_code


class ModelUnavailableError(CareAgentError):
    """Model call failed after all retry attempts"""

    kind = ErrorKind.MODEL_UNAVAILABLE

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(
            f"Model call failed after {attempts} attempts",
            code="model_unavailable",
            details={"attempts": attempts, "last_error": repr(last_error) if last_error else None}
        )
        self.attempts = attempts


class ToolExecutionError(CareAgentError):
    """A single tool call failed; reported back to the model as data"""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message, code="tool_execution_error", details={"tool_name": tool_name})
        self.tool_name = tool_name


class InvalidToolArgumentsError(ToolExecutionError):
    """Tool arguments did not match the tool's parameter schema"""

    def __init__(self, tool_name: str, message: str):
        super().__init__(tool_name, f"Invalid arguments for {tool_name}: {message}")
        self.code = "invalid_tool_arguments"


class PersistenceError(CareAgentError):
    """Conversation history write failed"""

    kind = ErrorKind.PERSISTENCE

    def __init__(self, message: str):
        super().__init__(message, code="persistence_error")


class RateLimitedError(CareAgentError):
    """Caller exceeded the conversation rate limit"""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, user_id: str, retry_after: int = 0):
        super().__init__(
            f"Rate limit exceeded for user {user_id}",
            code="rate_limited",
            details={"retry_after": retry_after}
        )
        self.retry_after = retry_after


class TurnCancelledError(CareAgentError):
    """The caller abandoned the turn before it completed"""

    kind = ErrorKind.CANCELLED

    def __init__(self, turn_id: str):
        super().__init__(f"Turn cancelled: {turn_id}", code="turn_cancelled")


# Short user-facing messages; internal details stay in the logs
_SAFE_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.NOT_FOUND: "We couldn't find that child's profile.",
    ErrorKind.RATE_LIMITED: "Too many questions in a short time. Please wait a moment and try again.",
    ErrorKind.MODEL_UNAVAILABLE: "The assistant is temporarily unavailable. Please try again shortly.",
    ErrorKind.PERSISTENCE: "Reply generation failed. Please try again.",
    ErrorKind.CANCELLED: "The request was cancelled.",
    ErrorKind.INTERNAL: "Something went wrong during the consultation. Please try again later.",
}


def safe_message(kind: ErrorKind) -> str:
    """Human-readable message for a failure tag"""

    return _SAFE_MESSAGES.get(kind, _SAFE_MESSAGES[ErrorKind.INTERNAL])
