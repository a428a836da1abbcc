from typing import Dict, Any

import jsonschema

from caregiver_agent.domain.errors import InvalidToolArgumentsError
from caregiver_agent.domain.tool.tool_registry import ToolSpec

_FORMAT_CHECKER = jsonschema.FormatChecker()


class ToolParameterValidator:
    """Checks model-supplied arguments against a tool's JSON Schema"""

    @staticmethod
    def validate_tool_call(tool: ToolSpec, parameters: Dict[str, Any]) -> None:
        """Raise InvalidToolArgumentsError when parameters do not fit the schema"""

        if not isinstance(parameters, dict):
            raise InvalidToolArgumentsError(tool.name, "arguments must be a JSON object")

        try:
            jsonschema.validate(parameters, tool.parameters, format_checker=_FORMAT_CHECKER)
        except jsonschema.ValidationError as e:
            path = ".".join(str(p) for p in e.absolute_path)
            detail = f"{path}: {e.message}" if path else e.message
            raise InvalidToolArgumentsError(tool.name, detail) from e
