from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from relay_loop.agent import DEFAULT_MAX_TOOL_RESULT_CHARS
from relay_loop.events import EventEmitter
from relay_loop.middleware.registry import MiddlewareRegistry, default_middleware_registry
from relay_loop.provider import LLMProvider
from relay_loop.session_config import SessionConfig
from relay_loop.store.session_repository import SessionRepository
from relay_loop.tool_registry import ToolRegistry

DEFAULT_GLOBAL_MIDDLEWARE = ("log_turns", "cost_tracker")


@dataclass
class SessionServices:
    """Collaborators shared by every session created from one runtime."""

    provider_factory: Callable[[], LLMProvider]
    repository: SessionRepository | None = None
    events: EventEmitter = field(default_factory=EventEmitter)
    tool_registry: ToolRegistry = field(default_factory=ToolRegistry)
    middleware_registry: MiddlewareRegistry = field(default_factory=default_middleware_registry)
    global_middleware: list[str] = field(default_factory=lambda: list(DEFAULT_GLOBAL_MIDDLEWARE))
    default_config: SessionConfig = field(default_factory=SessionConfig)
    max_concurrent_sessions: int = 10
    persist_sessions: bool = True
    persist_turns: bool = True
    parallel_tools: bool = True
    max_tool_result_chars: int = DEFAULT_MAX_TOOL_RESULT_CHARS
    job_queue: Any = None
