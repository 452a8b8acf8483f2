from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger


class StopReason(str, Enum):
    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"
    PAUSE_TURN = "pause_turn"


class SessionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    MAX_TURNS_REACHED = "max_turns_reached"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({
    SessionStatus.COMPLETED,
    SessionStatus.FAILED,
    SessionStatus.MAX_TURNS_REACHED,
})


class TurnType(str, Enum):
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_anthropic_block(cls, block: dict) -> ToolCall:
        return cls(id=block["id"], name=block["name"], input=block.get("input") or {})

    @classmethod
    def from_openai_block(cls, block: dict) -> ToolCall:
        function = block.get("function") or {}
        return cls(
            id=block["id"],
            name=function.get("name", ""),
            input=decode_arguments(function.get("arguments")),
        )

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "input": self.input}


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    tool_name: str
    content: Any
    is_error: bool = False

    def to_block(self) -> dict:
        """Render as an Anthropic-style ``tool_result`` content block."""
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content_for_api(),
            "is_error": self.is_error,
        }

    def content_for_api(self) -> str | list[dict]:
        if isinstance(self.content, str):
            return self.content
        if is_content_block_list(self.content):
            return self.content
        return json.dumps(self.content, ensure_ascii=False, default=str)


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: dict[str, Any]

    def to_anthropic(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    def to_openai(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


@dataclass(frozen=True)
class ProviderResponse:
    id: str
    stop_reason: StopReason
    content: list[dict]
    tool_calls: list[ToolCall]
    input_tokens: int
    output_tokens: int
    text_content: str | None


@dataclass(frozen=True)
class SessionResult:
    id: str
    status: SessionStatus
    final_message: str | None
    total_turns: int
    total_input_tokens: int
    total_output_tokens: int
    estimated_cost_usd: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.status is SessionStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status is SessionStatus.FAILED

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    @property
    def error(self) -> str | None:
        return self.metadata.get("error")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "final_message": self.final_message,
            "total_turns": self.total_turns,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "estimated_cost_usd": self.estimated_cost_usd,
            "metadata": self.metadata,
        }


def is_content_block_list(value: Any) -> bool:
    return (
        isinstance(value, list)
        and bool(value)
        and all(isinstance(b, dict) and "type" in b for b in value)
    )


def decode_arguments(raw: str | dict | None) -> dict:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse tool call arguments: {raw[:200]}")
        return {}
    return decoded if isinstance(decoded, dict) else {}
