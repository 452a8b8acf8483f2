from __future__ import annotations

from collections.abc import Iterable

from loguru import logger

from relay_loop.errors import UnknownToolError
from relay_loop.models import ToolDefinition
from relay_loop.tool import Tool, definition_of


class Toolkit:
    """Name-to-tool map for a single session run."""

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: dict[str, Tool] = {}
        self.register(tools)

    def register(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            name = tool.name
            if name in self._tools:
                # Re-inserting keeps the first registration's position.
                logger.warning(f"Tool {name!r} registered twice; the later registration wins")
            self._tools[name] = tool

    def resolve(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool

    def has(self, name: str) -> bool:
        return name in self._tools

    def definitions(self) -> list[ToolDefinition]:
        return [definition_of(t) for t in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)
