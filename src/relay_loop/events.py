from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, ClassVar

from loguru import logger

from relay_loop.models import SessionResult, ToolCall, ToolResult, TurnType


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


@dataclass(frozen=True)
class SessionStarted:
    kind: ClassVar[str] = "session.started"
    session_id: str
    name: str

    def to_payload(self) -> dict:
        return {"session_id": self.session_id, "name": self.name}


@dataclass(frozen=True)
class TurnCompleted:
    kind: ClassVar[str] = "turn.completed"
    session_id: str
    turn_number: int
    type: TurnType
    stop_reason: str | None

    def to_payload(self) -> dict:
        return {
            "session_id": self.session_id,
            "turn_number": self.turn_number,
            "type": self.type.value,
            "stop_reason": self.stop_reason,
        }


@dataclass(frozen=True)
class ToolExecuted:
    kind: ClassVar[str] = "tool.executed"
    session_id: str
    call: ToolCall
    result: ToolResult
    duration_ms: int

    def to_payload(self) -> dict:
        return {
            "session_id": self.session_id,
            "tool_name": self.call.name,
            "tool_use_id": self.call.id,
            "is_error": self.result.is_error,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class SessionCompleted:
    kind: ClassVar[str] = "session.completed"
    session_id: str
    result: SessionResult

    def to_payload(self) -> dict:
        return {
            "session_id": self.session_id,
            "status": self.result.status.value,
            "total_turns": self.result.total_turns,
            "total_tokens": self.result.total_tokens,
            "estimated_cost_usd": self.result.estimated_cost_usd,
        }


@dataclass(frozen=True)
class SessionFailed:
    kind: ClassVar[str] = "session.failed"
    session_id: str
    error: str

    def to_payload(self) -> dict:
        return {"session_id": self.session_id, "error": self.error}


Event = SessionStarted | TurnCompleted | ToolExecuted | SessionCompleted | SessionFailed
EventListener = Callable[[Any], None]

EVENT_KINDS = (
    SessionStarted.kind,
    TurnCompleted.kind,
    ToolExecuted.kind,
    SessionCompleted.kind,
    SessionFailed.kind,
)


class EventEmitter:
    """In-process fan-out of session lifecycle events."""

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def emit(self, event: Event) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as ex:
                logger.warning(f"Event listener failed for {event.kind}: {ex}")
