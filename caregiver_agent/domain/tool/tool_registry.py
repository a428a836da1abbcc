from typing import Dict, List, Any, Optional, Callable, Awaitable
from pydantic import BaseModel, ConfigDict, Field

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class ToolSpec(BaseModel):
    """A model-callable tool: name, JSON Schema for its arguments and handler"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    handler: ToolHandler

    def declaration(self) -> Dict[str, Any]:
        """Function declaration in the OpenAI tool format"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """Registry for the tools offered to the model"""

    def __init__(self):
        self.tools: Dict[str, ToolSpec] = {}

    def register_tool(self, spec: ToolSpec):
        """Register a new tool"""

        if spec.name in self.tools:
            raise ValueError(f"Tool already registered: {spec.name}")

        self.tools[spec.name] = spec

    def get(self, name: str) -> Optional[ToolSpec]:
        return self.tools.get(name)

    def catalogue(self) -> List[Dict[str, Any]]:
        """Declarations for every registered tool, in registration order"""

        return [spec.declaration() for spec in self.tools.values()]

