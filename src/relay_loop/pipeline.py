from __future__ import annotations

import json

from loguru import logger

from relay_loop.models import SessionResult, SessionStatus
from relay_loop.session import Session


class PipelineResult:
    def __init__(self, results: list[SessionResult]):
        self._results = list(results)

    def all(self) -> list[SessionResult]:
        return list(self._results)

    def stage(self, index: int) -> SessionResult | None:
        if 0 <= index < len(self._results):
            return self._results[index]
        return None

    def final(self) -> SessionResult | None:
        return self._results[-1] if self._results else None

    def successful(self) -> bool:
        return all(r.status is SessionStatus.COMPLETED for r in self._results)

    def first_failure(self) -> SessionResult | None:
        return next((r for r in self._results if r.status is SessionStatus.FAILED), None)

    def total_cost(self) -> float:
        return sum(r.estimated_cost_usd for r in self._results)

    def total_tokens(self) -> int:
        return sum(r.total_tokens for r in self._results)

    def stage_count(self) -> int:
        return len(self._results)


class Pipeline:
    """Runs sessions one after another, handing each the earlier stages' outputs."""

    def __init__(self) -> None:
        self._stages: list[tuple[Session, str]] = []

    def pipe(self, session: Session, message: str) -> Pipeline:
        self._stages.append((session, message))
        return self

    async def run(self) -> PipelineResult:
        results: list[SessionResult] = []
        accumulated: list[dict] = []

        for index, (session, message) in enumerate(self._stages):
            if accumulated:
                previous = json.dumps(accumulated, indent=4, ensure_ascii=False)
                message = f"{message}\n\n---\nResults from previous stages:\n```json\n{previous}\n```"

            try:
                result = await session.start(message)
            except Exception as ex:
                logger.error(f"Pipeline stage {index + 1} ({session.name}) failed: {ex}")
                results.append(session.result())
                break

            results.append(result)
            accumulated.append({
                "agent": result.id,
                "stage": index + 1,
                "status": result.status.value,
                "output": result.final_message,
                "tokens_used": result.total_tokens,
                "cost_usd": result.estimated_cost_usd,
            })

        return PipelineResult(results)
