"""Tests for tool registration, validation and execution."""

from unittest.mock import AsyncMock

import pytest

from conftest import ENTITY_ID
from caregiver_agent.domain.context.memory.history_store import HistoryStore
from caregiver_agent.domain.context.memory.runtime_memory import InMemoryCareStore
from caregiver_agent.domain.errors import InvalidToolArgumentsError, ToolExecutionError
from caregiver_agent.domain.models.agent_state import ToolCall
from caregiver_agent.domain.tool.catalog import build_tool_registry
from caregiver_agent.domain.tool.tool_executor import UNKNOWN_FUNCTION, ToolExecutor
from caregiver_agent.domain.tool.tool_registry import ToolRegistry, ToolSpec
from caregiver_agent.domain.tool.tool_validator import ToolParameterValidator


def spec(name: str, handler, parameters=None) -> ToolSpec:
    return ToolSpec(
        name=name,
        description=f"{name} tool",
        parameters=parameters or {"type": "object", "properties": {}},
        handler=handler,
    )


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_duplicate_names_are_rejected(self) -> None:
        registry = ToolRegistry()
        registry.register_tool(spec("a", AsyncMock()))

        with pytest.raises(ValueError):
            registry.register_tool(spec("a", AsyncMock()))

    def test_catalogue_uses_function_format(self) -> None:
        registry = ToolRegistry()
        registry.register_tool(spec("a", AsyncMock()))

        assert registry.catalogue() == [{
            "type": "function",
            "function": {"name": "a", "description": "a tool", "parameters": {"type": "object", "properties": {}}},
        }]

    def test_full_catalogue(self, store: InMemoryCareStore, history: HistoryStore) -> None:
        registry = build_tool_registry(store, history)

        names = [d["function"]["name"] for d in registry.catalogue()]
        assert len(names) == 9
        assert names[-1] == "getChatHistory"
        assert registry.get("getChatHistory") is not None


class TestToolParameterValidator:
    """Tests for argument validation."""

    def test_bad_date_format(self) -> None:
        tool = spec("t", AsyncMock(), {
            "type": "object",
            "properties": {"date": {"type": "string", "format": "date"}},
            "required": ["date"],
        })

        with pytest.raises(InvalidToolArgumentsError) as exc_info:
            ToolParameterValidator.validate_tool_call(tool, {"date": "yesterday"})

        assert "date" in exc_info.value.message

    def test_missing_required(self) -> None:
        tool = spec("t", AsyncMock(), {"type": "object", "properties": {}, "required": ["x"]})

        with pytest.raises(InvalidToolArgumentsError):
            ToolParameterValidator.validate_tool_call(tool, {})

    def test_non_object_arguments(self) -> None:
        with pytest.raises(InvalidToolArgumentsError):
            ToolParameterValidator.validate_tool_call(spec("t", AsyncMock()), ["not", "a", "dict"])


class TestToolExecutor:
    """Tests for ToolExecutor."""

    @pytest.mark.asyncio
    async def test_handler_receives_scoped_entity(self) -> None:
        handler = AsyncMock(return_value={"ok": True})
        registry = ToolRegistry()
        registry.register_tool(spec("a", handler))

        result = await ToolExecutor(registry).execute(
            ToolCall(name="a", arguments={"entity_id": "someone-else"}), ENTITY_ID
        )

        handler.assert_awaited_once_with({"entity_id": ENTITY_ID})
        assert result.payload() == {"result": {"ok": True}}

    @pytest.mark.asyncio
    async def test_unknown_tool(self) -> None:
        result = await ToolExecutor(ToolRegistry()).execute(ToolCall(name="nope"), ENTITY_ID)

        assert result.payload() == {"error": UNKNOWN_FUNCTION}

    @pytest.mark.asyncio
    async def test_invalid_arguments_become_error_result(self) -> None:
        handler = AsyncMock()
        registry = ToolRegistry()
        registry.register_tool(spec("a", handler, {
            "type": "object", "properties": {"n": {"type": "integer"}}, "required": ["n"]
        }))

        result = await ToolExecutor(registry).execute(ToolCall(name="a", arguments={"n": "five"}), ENTITY_ID)

        assert not result.success
        assert result.error.startswith("Invalid arguments for a")
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_batch_isolates_failures_and_keeps_order(self) -> None:
        registry = ToolRegistry()
        registry.register_tool(spec("ok", AsyncMock(return_value=1)))
        registry.register_tool(spec("boom", AsyncMock(side_effect=RuntimeError("db exploded"))))
        registry.register_tool(spec("refuse", AsyncMock(side_effect=ToolExecutionError("refuse", "not allowed"))))
        calls = [ToolCall(name="boom"), ToolCall(name="ok"), ToolCall(name="refuse")]

        results = await ToolExecutor(registry).execute_batch(calls, ENTITY_ID)

        assert [r.call_id for r in results] == [c.id for c in calls]
        assert [r.payload() for r in results] == [
            {"error": "db exploded"},
            {"result": 1},
            {"error": "not allowed"},
        ]
