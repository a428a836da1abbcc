from typing import Dict, Any, List
import time

import structlog

from caregiver_agent.domain.errors import ToolExecutionError
from caregiver_agent.domain.models.agent_state import ToolCall, ToolResult
from caregiver_agent.domain.tool.tool_registry import ToolRegistry
from caregiver_agent.domain.tool.tool_validator import ToolParameterValidator
from caregiver_agent.infrastructure.observability.langfuse_tracing import observe, annotate_tool
from caregiver_agent.infrastructure.observability.logging import conversation_logger, metrics

logger = structlog.get_logger(__name__)

UNKNOWN_FUNCTION = "Unknown function"


class ToolExecutor:
    """Runs model-requested tool calls with per-call error isolation.

    A failing call becomes an error result; it never aborts the batch or the
    conversation turn.
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry
        self.validator = ToolParameterValidator()

    async def execute_batch(self, calls: List[ToolCall], entity_id: str) -> List[ToolResult]:
        """Execute calls one after another; results keep call order"""

        results = []
        for call in calls:
            results.append(await self.execute(call, entity_id))
        return results

    @observe(name="tool_execution", capture_input=False)
    async def execute(self, call: ToolCall, entity_id: str) -> ToolResult:
        """Execute a single tool call scoped to entity_id"""

        start = time.perf_counter()
        result = await self._run(call, entity_id)
        duration_ms = (time.perf_counter() - start) * 1000

        conversation_logger.log_tool_execution(
            tool_name=call.name,
            entity_id=entity_id,
            arguments=call.arguments,
            duration_ms=duration_ms,
            success=result.success,
            error=result.error
        )
        metrics.record_latency("tool_execution", duration_ms, tags={"tool": call.name})
        annotate_tool(call.name, call.arguments, result.payload(), result.success)

        return result

    async def _run(self, call: ToolCall, entity_id: str) -> ToolResult:
        tool = self.registry.get(call.name)
        if tool is None:
            logger.warning("Model requested unknown tool", tool_name=call.name)
            return ToolResult(call_id=call.id, name=call.name, error=UNKNOWN_FUNCTION)

        try:
            self.validator.validate_tool_call(tool, call.arguments)
            scoped: Dict[str, Any] = {**call.arguments, "entity_id": entity_id}
            output = await tool.handler(scoped)
        except ToolExecutionError as e:
            return ToolResult(call_id=call.id, name=call.name, error=e.message)
        except Exception as e:
            logger.error("Tool handler failed", tool_name=call.name, error=str(e), exc_info=True)
            return ToolResult(call_id=call.id, name=call.name, error=str(e) or type(e).__name__)

        return ToolResult(call_id=call.id, name=call.name, result=output)
