from __future__ import annotations

from loguru import logger

from relay_loop.errors import RelayLoopError
from relay_loop.jobs import SessionJob
from relay_loop.models import SessionResult, SessionStatus
from relay_loop.services import SessionServices
from relay_loop.session import Session
from relay_loop.store.models import SessionRecord


class OrchestratorResult:
    def __init__(self, name: str, results: list[SessionResult], ids: list[str]):
        self.name = name
        self._results = list(results)
        self._ids = list(ids)

    def all(self) -> list[SessionResult]:
        return list(self._results)

    def get(self, session_id: str) -> SessionResult | None:
        return next((r for r in self._results if r.id == session_id), None)

    def successful(self) -> bool:
        return bool(self._results) and all(r.status is SessionStatus.COMPLETED for r in self._results)

    def failures(self) -> list[SessionResult]:
        return [r for r in self._results if r.status is SessionStatus.FAILED]

    def merged_output(self) -> list[dict]:
        return [
            {
                "agent_id": r.id,
                "status": r.status.value,
                "output": r.final_message,
                "cost_usd": r.estimated_cost_usd,
            }
            for r in self._results
        ]

    def total_cost(self) -> float:
        return sum(r.estimated_cost_usd for r in self._results)

    def total_tokens(self) -> int:
        return sum(r.total_tokens for r in self._results)

    def agent_count(self) -> int:
        return len(self._results)


class Orchestrator:
    """Fans independent sessions out, either through the job queue or in turn."""

    def __init__(self, name: str, services: SessionServices):
        self._name = name
        self._services = services
        self._units: list[tuple[Session, str]] = []
        self._dispatched_ids: list[str] = []

    @property
    def name(self) -> str:
        return self._name

    def agent(self, session: Session, message: str) -> Orchestrator:
        self._units.append((session, message))
        return self

    def dispatch(self, queue=None) -> Orchestrator:
        queue = queue or self._services.job_queue
        if queue is None:
            raise RelayLoopError("No job queue is configured for dispatch.")
        for session, message in self._units:
            self._dispatched_ids.append(session.id)
            queue.enqueue(SessionJob(session=session.to_serializable(), message=message))
        logger.info(f"Orchestrator {self._name}: dispatched {len(self._units)} session(s)")
        return self

    async def run_sync(self) -> OrchestratorResult:
        results: list[SessionResult] = []
        for session, message in self._units:
            self._dispatched_ids.append(session.id)
            try:
                results.append(await session.start(message))
            except Exception as ex:
                logger.error(f"Orchestrator {self._name}: session {session.id} failed: {ex}")
                results.append(SessionResult(
                    id=session.id,
                    status=SessionStatus.FAILED,
                    final_message=None,
                    total_turns=0,
                    total_input_tokens=0,
                    total_output_tokens=0,
                    estimated_cost_usd=0.0,
                    metadata={"error": str(ex) or type(ex).__name__},
                ))
        return OrchestratorResult(self._name, results, self._dispatched_ids)

    def ids(self) -> list[str]:
        return list(self._dispatched_ids)

    def progress(self) -> dict[str, int]:
        buckets = {status.value: 0 for status in SessionStatus}
        for record in self._records():
            if record.status in buckets:
                buckets[record.status] += 1
        return {
            "total": len(self._dispatched_ids),
            "completed": buckets[SessionStatus.COMPLETED.value],
            "running": buckets[SessionStatus.RUNNING.value],
            "failed": buckets[SessionStatus.FAILED.value],
            "pending": buckets[SessionStatus.PENDING.value],
            "max_turns_reached": buckets[SessionStatus.MAX_TURNS_REACHED.value],
        }

    def is_complete(self) -> bool:
        progress = self.progress()
        finished = progress["completed"] + progress["failed"] + progress["max_turns_reached"]
        return finished == progress["total"]

    def results(self) -> OrchestratorResult:
        results = [_result_from_record(record) for record in self._records()]
        return OrchestratorResult(self._name, results, self._dispatched_ids)

    def _records(self) -> list[SessionRecord]:
        repository = self._services.repository
        if repository is None or not self._dispatched_ids:
            return []
        by_id = repository.get_sessions(self._dispatched_ids)
        return [by_id[sid] for sid in self._dispatched_ids if sid in by_id]


def _result_from_record(record: SessionRecord) -> SessionResult:
    result = record.result or {}
    metadata = {"name": record.name, "model": record.model}
    if record.error is not None:
        metadata["error"] = record.error
    return SessionResult(
        id=record.id,
        status=SessionStatus(record.status),
        final_message=result.get("message"),
        total_turns=record.total_turns,
        total_input_tokens=record.total_input_tokens,
        total_output_tokens=record.total_output_tokens,
        estimated_cost_usd=float(record.estimated_cost_usd),
        metadata=metadata,
    )
