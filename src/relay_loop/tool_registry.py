from __future__ import annotations

from collections.abc import Iterable
from typing import Callable

from relay_loop.errors import UnknownToolError
from relay_loop.tool import Tool

ToolFactory = Callable[[], Tool]


class ToolRegistry:
    """Builds tools by name so a session can be rebuilt from its serialized form."""

    def __init__(self) -> None:
        self._factories: dict[str, ToolFactory] = {}

    def register(self, name: str, factory: ToolFactory) -> None:
        self._factories[name] = factory

    def register_instance(self, tool: Tool) -> None:
        self._factories[tool.name] = lambda: tool

    def has(self, name: str) -> bool:
        return name in self._factories

    def names(self) -> list[str]:
        return list(self._factories)

    def build(self, names: Iterable[str]) -> list[Tool]:
        tools: list[Tool] = []
        for name in names:
            factory = self._factories.get(name)
            if factory is None:
                raise UnknownToolError(name)
            tools.append(factory())
        return tools
