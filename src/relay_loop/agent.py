from __future__ import annotations

import asyncio
import inspect
import json
import time
from collections.abc import Coroutine
from typing import Any

from loguru import logger

from relay_loop.errors import UnknownToolError
from relay_loop.events import EventEmitter, ToolExecuted
from relay_loop.models import ToolCall, ToolResult
from relay_loop.toolkit import Toolkit

DEFAULT_MAX_TOOL_RESULT_CHARS = 40_000

# Failures while creating tasks that send the batch down the sequential path.
_SPAWN_ERRORS = (RuntimeError, OSError, MemoryError)


class Agent:
    """Executes one turn's tool calls and returns results in call order."""

    def __init__(
        self,
        toolkit: Toolkit,
        *,
        session_id: str,
        events: EventEmitter | None = None,
        parallel: bool = True,
        max_tool_result_chars: int = DEFAULT_MAX_TOOL_RESULT_CHARS,
    ) -> None:
        self._toolkit = toolkit
        self._session_id = session_id
        self._events = events
        self._parallel = parallel
        self._max_tool_result_chars = max_tool_result_chars

    async def execute_tools(self, calls: list[ToolCall]) -> list[ToolResult]:
        if not calls:
            return []
        if not self._parallel or len(calls) == 1:
            return await self._execute_sequential(calls)

        try:
            tasks = self._spawn(calls)
        except _SPAWN_ERRORS as ex:
            logger.warning(
                f"Parallel tool execution unavailable ({type(ex).__name__}: {ex}); "
                f"running {len(calls)} calls sequentially, session={self._session_id}"
            )
            return await self._execute_sequential(calls)

        return list(await asyncio.gather(*tasks))

    async def _execute_sequential(self, calls: list[ToolCall]) -> list[ToolResult]:
        results: list[ToolResult] = []
        for call in calls:
            results.append(await self._run_one(call, offload_sync=False))
        return results

    def _spawn(self, calls: list[ToolCall]) -> list[asyncio.Task]:
        tasks: list[asyncio.Task] = []
        for call in calls:
            coro = self._run_one(call, offload_sync=True)
            try:
                tasks.append(self._create_task(coro))
            except BaseException:
                coro.close()
                for task in tasks:
                    task.cancel()
                raise
        return tasks

    def _create_task(self, coro: Coroutine[Any, Any, ToolResult]) -> asyncio.Task:
        return asyncio.create_task(coro)

    async def _run_one(self, call: ToolCall, *, offload_sync: bool) -> ToolResult:
        started = time.perf_counter()
        result = await self._invoke(call, offload_sync=offload_sync)
        duration_ms = int((time.perf_counter() - started) * 1000)
        if self._events is not None:
            self._events.emit(ToolExecuted(
                session_id=self._session_id,
                call=call,
                result=result,
                duration_ms=duration_ms,
            ))
        return result

    async def _invoke(self, call: ToolCall, *, offload_sync: bool) -> ToolResult:
        try:
            tool = self._toolkit.resolve(call.name)
        except UnknownToolError:
            logger.warning(f"Unknown tool requested: {call.name}, session={self._session_id}")
            return ToolResult(
                tool_use_id=call.id,
                tool_name=call.name,
                content=f'Error: unknown tool "{call.name}"',
                is_error=True,
            )

        try:
            if inspect.iscoroutinefunction(tool.execute):
                output = await tool.execute(call.input)
            elif offload_sync:
                output = await asyncio.to_thread(tool.execute, call.input)
            else:
                output = tool.execute(call.input)
            if inspect.isawaitable(output):
                output = await output
            if not isinstance(output, str):
                output = _json_safe(output)
        except Exception as ex:
            logger.error(
                f"Tool {call.name} failed, session={self._session_id}: "
                f"{type(ex).__name__}: {ex}"
            )
            return ToolResult(
                tool_use_id=call.id,
                tool_name=call.name,
                content=f'Error executing tool "{call.name}": {type(ex).__name__}',
                is_error=True,
            )

        if isinstance(output, str):
            output = self._truncate_tool_result(output, call.name)
        return ToolResult(tool_use_id=call.id, tool_name=call.name, content=output)

    def _truncate_tool_result(self, result: str, tool_name: str) -> str:
        if self._max_tool_result_chars <= 0 or len(result) <= self._max_tool_result_chars:
            return result

        original_length = len(result)
        truncated = result[: self._max_tool_result_chars]
        message = (
            f"\n\n[OUTPUT TRUNCATED: Showing {self._max_tool_result_chars:,} "
            f"of {original_length:,} characters from {tool_name}]"
        )
        logger.warning(
            f"{tool_name} output truncated from {original_length:,} "
            f"to {self._max_tool_result_chars:,} chars"
        )
        return truncated + message


def _json_safe(output: Any) -> Any:
    """Round-trip structured output through JSON; unknown types become strings."""
    return json.loads(json.dumps(output, ensure_ascii=False, default=str))
