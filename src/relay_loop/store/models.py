from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from typing import Any


def _loads(raw: str | None) -> Any:
    return json.loads(raw) if raw else None


@dataclass(frozen=True)
class SessionRecord:
    id: str
    name: str
    status: str
    model: str
    system_prompt: str
    context_json: str | None
    config_json: str | None
    blueprint_json: str | None
    initial_message: str | None
    total_turns: int
    total_input_tokens: int
    total_output_tokens: int
    estimated_cost_usd: float
    result_json: str | None
    error: str | None
    started_at: str | None
    completed_at: str | None
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> SessionRecord:
        return cls(**{key: row[key] for key in row.keys()})

    @property
    def context(self) -> dict:
        return _loads(self.context_json) or {}

    @property
    def config(self) -> dict:
        return _loads(self.config_json) or {}

    @property
    def result(self) -> dict | None:
        return _loads(self.result_json)

    @property
    def blueprint(self) -> dict | None:
        return _loads(self.blueprint_json)


@dataclass(frozen=True)
class TurnRecord:
    id: int
    session_id: str
    turn_number: int
    type: str
    content_json: str
    tool_calls_json: str | None
    tool_results_json: str | None
    input_tokens: int | None
    output_tokens: int | None
    stop_reason: str | None
    duration_ms: int | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> TurnRecord:
        return cls(**{key: row[key] for key in row.keys()})

    @property
    def content(self) -> Any:
        return _loads(self.content_json)

    @property
    def tool_calls(self) -> list[dict]:
        return _loads(self.tool_calls_json) or []

    @property
    def tool_results(self) -> list[dict]:
        return _loads(self.tool_results_json) or []
