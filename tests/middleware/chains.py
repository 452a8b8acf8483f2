from collections.abc import Sequence

from relay_loop.middleware.base import Middleware, compose_after_response, compose_after_tool_execution
from relay_loop.models import ProviderResponse, ToolResult


async def run_after_response(middleware: Sequence[Middleware], response: ProviderResponse) -> ProviderResponse:
    return await compose_after_response(middleware)(response)


async def run_after_tool_execution(middleware: Sequence[Middleware], results: list[ToolResult]) -> list[ToolResult]:
    return await compose_after_tool_execution(middleware)(results)
