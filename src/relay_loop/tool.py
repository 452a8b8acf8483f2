from typing import Any, Protocol, runtime_checkable

from relay_loop.models import ToolDefinition


@runtime_checkable
class Tool(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def input_schema(self) -> dict[str, Any]: ...

    def execute(self, tool_input: dict[str, Any]) -> Any:
        """Run the tool. May be a coroutine function or a plain function."""
        ...


def definition_of(tool: Tool) -> ToolDefinition:
    return ToolDefinition(
        name=tool.name,
        description=tool.description,
        input_schema=tool.input_schema,
    )
