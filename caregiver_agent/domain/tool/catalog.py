from typing import Callable, Optional
from datetime import datetime

from caregiver_agent.domain.context.guidelines import GuidelineProvider
from caregiver_agent.domain.context.memory.care_store import CareStore
from caregiver_agent.domain.context.memory.history_store import HistoryStore
from caregiver_agent.domain.tool.activity_tools import ActivityTools
from caregiver_agent.domain.tool.history_tools import ChatHistoryTools
from caregiver_agent.domain.tool.tool_registry import ToolRegistry


def build_tool_registry(
    store: CareStore,
    history: HistoryStore,
    guidelines: Optional[GuidelineProvider] = None,
    clock: Optional[Callable[[], datetime]] = None
) -> ToolRegistry:
    """Registry holding every tool offered in a conversation turn"""

    registry = ToolRegistry()
    for spec in ActivityTools(store, guidelines, clock).specs():
        registry.register_tool(spec)
    for spec in ChatHistoryTools(history).specs():
        registry.register_tool(spec)
    return registry
