from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from relay_loop.events import utc_now
from relay_loop.store.models import SessionRecord, TurnRecord
from relay_loop.store.store import SqliteStore

# Session columns that update_session may touch, keyed by argument name.
_UPDATABLE_COLUMNS = {
    "status": "status",
    "total_turns": "total_turns",
    "total_input_tokens": "total_input_tokens",
    "total_output_tokens": "total_output_tokens",
    "estimated_cost_usd": "estimated_cost_usd",
    "result": "result_json",
    "error": "error",
    "started_at": "started_at",
    "completed_at": "completed_at",
}


def _dumps(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=True)


class SessionRepository:
    def __init__(self, store: SqliteStore):
        self._store = store

    @property
    def store(self) -> SqliteStore:
        return self._store

    def create_session(
        self,
        session_id: str,
        *,
        name: str,
        model: str,
        system_prompt: str,
        context: dict | None = None,
        config: dict | None = None,
        blueprint: dict | None = None,
        initial_message: str | None = None,
        started_at: str | None = None,
    ) -> None:
        """Insert a pending record; an existing id is reset so a retried job can reuse it."""
        now = utc_now()
        with self._store.transaction():
            self._store.execute("DELETE FROM turns WHERE session_id = ?", (session_id,))
            self._store.execute(
                """
                INSERT INTO sessions (
                    id, name, status, model, system_prompt, context_json, config_json,
                    blueprint_json, initial_message, started_at, created_at, updated_at
                )
                VALUES (?, ?, 'pending', ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    status = 'pending',
                    model = excluded.model,
                    system_prompt = excluded.system_prompt,
                    context_json = excluded.context_json,
                    config_json = excluded.config_json,
                    blueprint_json = excluded.blueprint_json,
                    initial_message = excluded.initial_message,
                    total_turns = 0,
                    total_input_tokens = 0,
                    total_output_tokens = 0,
                    estimated_cost_usd = 0,
                    result_json = NULL,
                    error = NULL,
                    started_at = excluded.started_at,
                    completed_at = NULL,
                    updated_at = excluded.updated_at
                """,
                (
                    session_id,
                    name,
                    model,
                    system_prompt,
                    _dumps(context),
                    _dumps(config),
                    _dumps(blueprint),
                    initial_message,
                    started_at,
                    now,
                    now,
                ),
            )

    def update_session(self, session_id: str, **fields: Any) -> None:
        unknown = set(fields) - set(_UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown session fields: {', '.join(sorted(unknown))}")
        if not fields:
            return

        assignments: list[str] = []
        params: list[Any] = []
        for key, value in fields.items():
            assignments.append(f"{_UPDATABLE_COLUMNS[key]} = ?")
            params.append(_dumps(value) if key == "result" else value)
        assignments.append("updated_at = ?")
        params.append(utc_now())
        params.append(session_id)

        with self._store.transaction():
            self._store.execute(
                f"UPDATE sessions SET {', '.join(assignments)} WHERE id = ?",
                tuple(params),
            )

    def create_turn(
        self,
        session_id: str,
        *,
        turn_number: int,
        type: str,
        content: Any,
        tool_calls: list[dict] | None = None,
        tool_results: list[dict] | None = None,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
        stop_reason: str | None = None,
        duration_ms: int | None = None,
    ) -> int:
        with self._store.transaction():
            cursor = self._store.execute(
                """
                INSERT INTO turns (
                    session_id, turn_number, type, content_json, tool_calls_json,
                    tool_results_json, input_tokens, output_tokens, stop_reason,
                    duration_ms, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    turn_number,
                    type,
                    json.dumps(content, ensure_ascii=True),
                    _dumps(tool_calls),
                    _dumps(tool_results),
                    input_tokens,
                    output_tokens,
                    stop_reason,
                    duration_ms,
                    utc_now(),
                ),
            )
        return int(cursor.lastrowid)

    def get_session(self, session_id: str) -> SessionRecord | None:
        row = self._store.execute(
            "SELECT * FROM sessions WHERE id = ? LIMIT 1",
            (session_id,),
        ).fetchone()
        return SessionRecord.from_row(row) if row is not None else None

    def get_sessions(self, session_ids: Iterable[str]) -> dict[str, SessionRecord]:
        ids = list(session_ids)
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = self._store.execute(
            f"SELECT * FROM sessions WHERE id IN ({placeholders})",
            tuple(ids),
        ).fetchall()
        return {str(row["id"]): SessionRecord.from_row(row) for row in rows}

    def list_sessions(self, *, limit: int = 50) -> list[SessionRecord]:
        rows = self._store.execute(
            "SELECT * FROM sessions ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (max(1, limit),),
        ).fetchall()
        return [SessionRecord.from_row(row) for row in rows]

    def list_turns(self, session_id: str) -> list[TurnRecord]:
        rows = self._store.execute(
            "SELECT * FROM turns WHERE session_id = ? ORDER BY turn_number ASC, id ASC",
            (session_id,),
        ).fetchall()
        return [TurnRecord.from_row(row) for row in rows]

    def count_by_status(self, status: str) -> int:
        row = self._store.execute(
            "SELECT COUNT(*) AS n FROM sessions WHERE status = ?",
            (status,),
        ).fetchone()
        return int(row["n"])

    def mark_failed_if_running(self, session_id: str, error: str) -> bool:
        now = utc_now()
        with self._store.transaction():
            cursor = self._store.execute(
                """
                UPDATE sessions
                SET status = 'failed', error = ?, completed_at = ?, updated_at = ?
                WHERE id = ? AND status = 'running'
                """,
                (error, now, now, session_id),
            )
        return cursor.rowcount > 0
