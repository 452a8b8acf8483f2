from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol, runtime_checkable

from relay_loop.models import ProviderResponse, ToolResult

ResponseNext = Callable[[ProviderResponse], Awaitable[ProviderResponse]]
ResultsNext = Callable[[list[ToolResult]], Awaitable[list[ToolResult]]]


@runtime_checkable
class Middleware(Protocol):
    async def after_response(self, response: ProviderResponse, next: ResponseNext) -> ProviderResponse: ...

    async def after_tool_execution(self, results: list[ToolResult], next: ResultsNext) -> list[ToolResult]: ...


class BaseMiddleware:
    """Pass-through for both hooks; subclasses override what they need."""

    name: str | None = None

    async def after_response(self, response: ProviderResponse, next: ResponseNext) -> ProviderResponse:
        return await next(response)

    async def after_tool_execution(self, results: list[ToolResult], next: ResultsNext) -> list[ToolResult]:
        return await next(results)


async def _response_identity(response: ProviderResponse) -> ProviderResponse:
    return response


async def _results_identity(results: list[ToolResult]) -> list[ToolResult]:
    return results


def compose_after_response(middleware: Sequence[Middleware]) -> ResponseNext:
    """Fold right-to-left so the first middleware wraps outermost."""
    chain: ResponseNext = _response_identity
    for mw in reversed(middleware):
        chain = _bind_response(mw, chain)
    return chain


def compose_after_tool_execution(middleware: Sequence[Middleware]) -> ResultsNext:
    chain: ResultsNext = _results_identity
    for mw in reversed(middleware):
        chain = _bind_results(mw, chain)
    return chain


def _bind_response(mw: Middleware, next: ResponseNext) -> ResponseNext:
    async def call(response: ProviderResponse) -> ProviderResponse:
        return await mw.after_response(response, next)
    return call


def _bind_results(mw: Middleware, next: ResultsNext) -> ResultsNext:
    async def call(results: list[ToolResult]) -> list[ToolResult]:
        return await mw.after_tool_execution(results, next)
    return call
