from typing import Dict, Any, List

from caregiver_agent.domain.context.memory.history_store import HistoryStore
from caregiver_agent.domain.tool.tool_registry import ToolSpec


class ChatHistoryTools:
    """Lets the model look further back in the conversation on demand"""

    def __init__(self, history: HistoryStore):
        self.history = history

    async def get_chat_history(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return await self.history.lookup(
            args["entity_id"],
            count=args.get("count", 3),
            search_keyword=args.get("searchKeyword"),
        )

    def specs(self) -> List[ToolSpec]:
        return [
            ToolSpec(
                name="getChatHistory",
                description=(
                    "Look up earlier conversations with this caregiver, newest up to count "
                    "(max 10). Use searchKeyword to find a conversation about a topic."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "count": {"type": "integer", "default": 3},
                        "searchKeyword": {"type": "string"},
                    },
                },
                handler=self.get_chat_history,
            )
        ]
