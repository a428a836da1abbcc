"""
Langfuse tracing for conversation turns and tool executions.

Tracing stays disabled unless both Langfuse keys are configured; the
``observe`` decorator is then a pass-through.
"""

from typing import Any, Dict, Optional

import structlog
from langfuse.decorators import langfuse_context, observe

from caregiver_agent.infrastructure.config.settings import Settings

logger = structlog.get_logger(__name__)

__all__ = ["configure_tracing", "observe", "annotate_turn", "annotate_tool"]


def configure_tracing(settings: Settings) -> bool:
    """Configure the Langfuse decorator client from settings"""

    enabled = settings.tracing_enabled
    langfuse_context.configure(
        public_key=settings.LANGFUSE_PUBLIC_KEY,
        secret_key=settings.LANGFUSE_SECRET_KEY.get_secret_value() or None,
        host=settings.LANGFUSE_HOST,
        enabled=enabled,
    )
    logger.info("Tracing configured", enabled=enabled)
    return enabled


def annotate_turn(entity_id: str, user_id: str, metadata: Optional[Dict[str, Any]] = None) -> None:
    """Attach turn identifiers to the current trace"""

    langfuse_context.update_current_trace(
        user_id=user_id,
        session_id=f"entity_{entity_id}",
        tags=["conversation_turn"],
        metadata=metadata or {}
    )


def annotate_tool(tool_name: str, arguments: Dict[str, Any], output: Any, success: bool) -> None:
    """Record tool input/output on the current observation"""

    langfuse_context.update_current_observation(
        input=arguments,
        output=output,
        metadata={"tool_name": tool_name, "success": success}
    )
