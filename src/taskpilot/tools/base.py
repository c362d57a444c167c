"""
Base classes for tools.
"""

from dataclasses import dataclass
from typing import Any, Callable, Coroutine


@dataclass
class ToolResult:
    """Result from a tool execution."""

    success: bool
    content: str = ""
    error: str | None = None
    data: Any = None

    # Structured fields for shell tools
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    job_id: str | None = None

    @property
    def message_text(self) -> str:
        """Text recorded in the conversation for this result."""
        return self.content if self.success else f"Error: {self.error}"


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None


@dataclass
class Tool:
    """A named capability the model can call, backed by an async handler.

    The handler receives the call arguments as keyword arguments and
    reports failures through the returned ToolResult.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: Callable[..., Coroutine[Any, Any, ToolResult]]

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            prop = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool handler."""
        return await self.handler(**kwargs)
