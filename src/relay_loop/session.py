from __future__ import annotations

import json
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from loguru import logger

from relay_loop.agent import Agent
from relay_loop.compaction import trim_messages
from relay_loop.errors import ConcurrencyLimitExceeded, SessionStateError
from relay_loop.events import (
    SessionCompleted,
    SessionFailed,
    SessionStarted,
    TurnCompleted,
    utc_now,
)
from relay_loop.middleware.base import (
    Middleware,
    ResponseNext,
    ResultsNext,
    compose_after_response,
    compose_after_tool_execution,
)
from relay_loop.models import (
    SessionResult,
    SessionStatus,
    StopReason,
    ToolCall,
    ToolResult,
    TurnType,
)
from relay_loop.pricing import estimate_cost
from relay_loop.provider import LLMProvider
from relay_loop.services import SessionServices
from relay_loop.session_config import SessionConfig
from relay_loop.tool import Tool
from relay_loop.toolkit import Toolkit

_FINISHING_STOP_REASONS = (StopReason.END_TURN, StopReason.MAX_TOKENS)


@dataclass
class _Run:
    provider: LLMProvider
    toolkit: Toolkit
    agent: Agent
    middleware: list[Middleware]
    after_response: ResponseNext
    after_tool_execution: ResultsNext


class Session:
    """One multi-turn conversation between a model and a set of tools.

    A session is started once. ``start()`` drives the provider turn by turn,
    executes requested tools, and finishes as ``completed``,
    ``max_turns_reached`` or ``failed``. A failure is recorded and persisted
    before the original exception is re-raised.
    """

    def __init__(
        self,
        name: str,
        *,
        services: SessionServices,
        system_prompt: str = "",
        tools: Iterable[Tool | str] = (),
        context: dict[str, Any] | None = None,
        config: SessionConfig | None = None,
        middleware: Iterable[Middleware | str] = (),
        session_id: str | None = None,
    ) -> None:
        self._id = session_id or str(uuid4())
        self._name = name
        self._services = services
        self._system_prompt = system_prompt
        self._tools: list[Tool | str] = list(tools)
        self._context: dict[str, Any] = dict(context or {})
        self._config = config or services.default_config
        self._middleware_entries: list[Middleware | str] = list(middleware)

        self._messages: list[dict] = []
        self._status = SessionStatus.PENDING
        self._turn_count = 0
        self._total_input_tokens = 0
        self._total_output_tokens = 0
        self._final_message: str | None = None
        self._error: str | None = None
        self._started_at: str | None = None
        self._completed_at: str | None = None
        self._persisted = False

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    @property
    def context(self) -> dict[str, Any]:
        return dict(self._context)

    @property
    def messages(self) -> list[dict]:
        return list(self._messages)

    @property
    def turn_count(self) -> int:
        return self._turn_count

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def started_at(self) -> str | None:
        return self._started_at

    @property
    def completed_at(self) -> str | None:
        return self._completed_at

    def configure(self, **overrides: Any) -> Session:
        """Rebuild the config; ``None`` values keep the current setting."""
        self._ensure_pending("configure")
        self._config = self._config.with_overrides(**overrides)
        return self

    async def start(self, initial_message: str) -> SessionResult:
        self._ensure_pending("start")
        self._guard_concurrency()

        self._started_at = utc_now()
        try:
            self._persist(initial_message)
            self._services.events.emit(SessionStarted(session_id=self._id, name=self._name))
            self._status = SessionStatus.RUNNING
            self._update_record()
            logger.info(f"Session started: id={self._id}, name={self._name}, model={self._config.model}")

            run = self._boot()
            self._messages = [{"role": "user", "content": self._build_initial_message(initial_message)}]
            await self._run_loop(run)

            self._completed_at = utc_now()
            self._update_record()
        except Exception as ex:
            self._record_failure(ex)
            raise

        result = self.result()
        self._services.events.emit(SessionCompleted(session_id=self._id, result=result))
        logger.info(
            f"Session finished: id={self._id}, status={self._status.value}, turns={self._turn_count}, "
            f"tokens={result.total_tokens}, cost_usd={result.estimated_cost_usd:.6f}"
        )
        return result

    def result(self) -> SessionResult:
        metadata: dict[str, Any] = {"name": self._name, "model": self._config.model}
        if self._error is not None:
            metadata["error"] = self._error
        return SessionResult(
            id=self._id,
            status=self._status,
            final_message=self._final_message,
            total_turns=self._turn_count,
            total_input_tokens=self._total_input_tokens,
            total_output_tokens=self._total_output_tokens,
            estimated_cost_usd=self._estimate_cost(),
            metadata=metadata,
        )

    def to_serializable(self) -> dict[str, Any]:
        registry = self._services.middleware_registry
        middleware_names: list[str] = []
        for entry in self._middleware_entries:
            name = registry.name_of(entry)
            if name is not None:
                middleware_names.append(name)
        return {
            "id": self._id,
            "name": self._name,
            "system_prompt": self._system_prompt,
            "tool_names": [t if isinstance(t, str) else t.name for t in self._tools],
            "context": dict(self._context),
            "middleware_names": middleware_names,
            "config": self._config.to_dict(),
        }

    @classmethod
    def from_serializable(cls, data: dict[str, Any], services: SessionServices) -> Session:
        """Rebuild a pending session; tool names resolve through the tool registry at start."""
        return cls(
            data["name"],
            services=services,
            system_prompt=data.get("system_prompt", ""),
            tools=data.get("tool_names", []),
            context=data.get("context") or {},
            config=SessionConfig.from_dict(data.get("config")),
            middleware=data.get("middleware_names", []),
            session_id=data.get("id"),
        )

    # -- run loop ---------------------------------------------------------

    def _boot(self) -> _Run:
        provider = self._services.provider_factory()
        toolkit = Toolkit(self._resolve_tools())
        agent = Agent(
            toolkit,
            session_id=self._id,
            events=self._services.events,
            parallel=self._services.parallel_tools,
            max_tool_result_chars=self._services.max_tool_result_chars,
        )
        middleware = self._services.middleware_registry.build_all(
            [*self._services.global_middleware, *self._middleware_entries],
            self._config,
        )
        return _Run(
            provider=provider,
            toolkit=toolkit,
            agent=agent,
            middleware=middleware,
            after_response=compose_after_response(middleware),
            after_tool_execution=compose_after_tool_execution(middleware),
        )

    def _resolve_tools(self) -> list[Tool]:
        tools: list[Tool] = []
        for entry in self._tools:
            if isinstance(entry, str):
                tools.extend(self._services.tool_registry.build([entry]))
            else:
                tools.append(entry)
        return tools

    async def _run_loop(self, run: _Run) -> None:
        definitions = run.toolkit.definitions()

        while self._turn_count < self._config.max_turns:
            self._turn_count += 1
            turn_started = time.perf_counter()

            self._messages = trim_messages(self._system_prompt, self._messages, self._config.context_budget)

            response = await run.provider.complete(
                self._system_prompt,
                self._messages,
                definitions,
                self._config,
            )
            response = await run.after_response(response)

            self._total_input_tokens += response.input_tokens
            self._total_output_tokens += response.output_tokens
            self._messages.append({"role": "assistant", "content": response.content})

            duration_ms = int((time.perf_counter() - turn_started) * 1000)
            self._persist_turn(
                TurnType.ASSISTANT,
                content=response.content,
                tool_calls=[c.to_dict() for c in response.tool_calls] or None,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                stop_reason=response.stop_reason.value,
                duration_ms=duration_ms,
            )
            self._services.events.emit(TurnCompleted(
                session_id=self._id,
                turn_number=self._turn_count,
                type=TurnType.ASSISTANT,
                stop_reason=response.stop_reason.value,
            ))

            if response.stop_reason in _FINISHING_STOP_REASONS:
                self._status = SessionStatus.COMPLETED
                self._final_message = response.text_content
                return

            if response.stop_reason is StopReason.TOOL_USE and response.tool_calls:
                results = await run.agent.execute_tools(response.tool_calls)
                results = await run.after_tool_execution(results)

                content = tool_result_message_content(response.tool_calls, results)
                self._messages.append({"role": "user", "content": content})
                self._persist_turn(
                    TurnType.TOOL_RESULT,
                    content=content,
                    tool_results=[r.to_block() for r in results],
                )

        logger.warning(f"Session {self._id} reached max_turns={self._config.max_turns} without finishing")
        self._status = SessionStatus.MAX_TURNS_REACHED

    def _build_initial_message(self, message: str) -> str:
        if not self._context:
            return message
        context_json = json.dumps(self._context, indent=4, ensure_ascii=False)
        return f"{message}\n\n---\nInitial context:\n```json\n{context_json}\n```"

    # -- persistence ------------------------------------------------------

    def _ensure_pending(self, action: str) -> None:
        if self._status is not SessionStatus.PENDING:
            raise SessionStateError(
                f"Cannot {action} session {self._id}: status is {self._status.value}"
            )

    def _guard_concurrency(self) -> None:
        limit = self._services.max_concurrent_sessions
        repository = self._services.repository
        if limit <= 0 or repository is None:
            return
        running = repository.count_by_status(SessionStatus.RUNNING.value)
        if running >= limit:
            raise ConcurrencyLimitExceeded(running, limit)

    def _persist(self, initial_message: str) -> None:
        repository = self._services.repository
        if repository is None or not self._services.persist_sessions:
            return
        repository.create_session(
            self._id,
            name=self._name,
            model=self._config.model,
            system_prompt=self._system_prompt,
            context=self._context,
            config=self._config.to_dict(),
            blueprint=self.to_serializable(),
            initial_message=initial_message,
            started_at=self._started_at,
        )
        self._persisted = True

    def _record_failure(self, ex: Exception) -> None:
        self._status = SessionStatus.FAILED
        self._error = str(ex) or type(ex).__name__
        self._completed_at = utc_now()
        try:
            self._update_record()
        except Exception as persist_error:
            logger.error(f"Could not persist failure of session {self._id}: {persist_error}")
        self._services.events.emit(SessionFailed(session_id=self._id, error=self._error))
        logger.error(f"Session failed: id={self._id}, turn={self._turn_count}, error={self._error}")

    def _update_record(self) -> None:
        if not self._persisted:
            return
        self._services.repository.update_session(
            self._id,
            status=self._status.value,
            total_turns=self._turn_count,
            total_input_tokens=self._total_input_tokens,
            total_output_tokens=self._total_output_tokens,
            estimated_cost_usd=self._estimate_cost(),
            result={"message": self._final_message} if self._final_message else None,
            error=self._error,
            started_at=self._started_at,
            completed_at=self._completed_at,
        )

    def _persist_turn(self, type: TurnType, *, content: Any, **fields: Any) -> None:
        if not self._persisted or not self._services.persist_turns:
            return
        self._services.repository.create_turn(
            self._id,
            turn_number=self._turn_count,
            type=type.value,
            content=content,
            **fields,
        )

    def _estimate_cost(self) -> float:
        return round(
            estimate_cost(self._config.model, self._total_input_tokens, self._total_output_tokens),
            6,
        )


def tool_result_message_content(calls: list[ToolCall], results: list[ToolResult]) -> list[dict]:
    """Build the user message that answers one turn's tool calls.

    Results whose id matches a call become ``tool_result`` blocks. Any other
    result (such as injected visual feedback) follows them as plain content.
    """
    call_ids = {call.id for call in calls}
    blocks = [r.to_block() for r in results if r.tool_use_id in call_ids]
    for result in results:
        if result.tool_use_id in call_ids:
            continue
        content = result.content_for_api()
        if isinstance(content, list):
            blocks.extend(content)
        else:
            blocks.append({"type": "text", "text": content})
    return blocks
