from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from loguru import logger
from tenacity import AsyncRetrying, stop_after_attempt, stop_after_delay, wait_incrementing

from relay_loop.models import SessionResult
from relay_loop.session import Session


@dataclass(frozen=True)
class SessionJob:
    """Queued run of one serialized session."""

    session: dict[str, Any]
    message: str

    @property
    def name(self) -> str:
        return str(self.session.get("name", "unknown"))

    @property
    def session_id(self) -> str | None:
        return self.session.get("id")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionJob:
        return cls(session=data["session"], message=data["message"])

    def to_dict(self) -> dict[str, Any]:
        return {"session": self.session, "message": self.message}


async def run_session_job(job: SessionJob, services, *, timeout_seconds: float) -> SessionResult:
    session = Session.from_serializable(job.session, services)
    try:
        return await asyncio.wait_for(session.start(job.message), timeout=timeout_seconds)
    except asyncio.TimeoutError as ex:
        raise TimeoutError(f"Session {session.id} timed out after {timeout_seconds}s") from ex


class AsyncJobQueue:
    """In-process worker pool that runs queued sessions with retry and a hard timeout."""

    def __init__(
        self,
        services,
        *,
        workers: int = 2,
        max_attempts: int = 3,
        backoff_seconds: float = 10,
        giveup_seconds: float = 3600,
        timeout_seconds: float = 1800,
    ):
        self._services = services
        self._workers = max(1, workers)
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = max(0.0, backoff_seconds)
        self._giveup_seconds = giveup_seconds
        self._timeout_seconds = timeout_seconds
        self._queue: asyncio.Queue[SessionJob] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._results: dict[str, SessionResult] = {}
        self._failures: dict[str, str] = {}

    @property
    def results(self) -> dict[str, SessionResult]:
        return dict(self._results)

    @property
    def failures(self) -> dict[str, str]:
        return dict(self._failures)

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [asyncio.create_task(self._worker(i)) for i in range(self._workers)]

    def enqueue(self, job: SessionJob | dict[str, Any]) -> None:
        if isinstance(job, dict):
            job = SessionJob.from_dict(job)
        self._queue.put_nowait(job)
        logger.debug(f"Job queued: session={job.session_id}, name={job.name}")

    async def join(self) -> None:
        await self._queue.join()

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._handle(job)
            finally:
                self._queue.task_done()

    def _retrying(self, job: SessionJob) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts) | stop_after_delay(self._giveup_seconds),
            wait=wait_incrementing(start=self._backoff_seconds, increment=self._backoff_seconds),
            before_sleep=lambda state: logger.warning(
                f"Session job {job.name} attempt "
                f"{state.attempt_number} failed: {state.outcome.exception()}; retrying"
            ),
            reraise=True,
        )

    async def _handle(self, job: SessionJob) -> None:
        try:
            async for attempt in self._retrying(job):
                with attempt:
                    result = await run_session_job(
                        job,
                        self._services,
                        timeout_seconds=self._timeout_seconds,
                    )
        except Exception as ex:
            self._failed(job, ex)
            return

        self._results[result.id] = result
        logger.info(f"Session job finished: session={result.id}, status={result.status.value}")

    def _failed(self, job: SessionJob, exception: Exception) -> None:
        error = str(exception) or type(exception).__name__
        logger.error(f"Session job failed: name={job.name}, session={job.session_id}, error={error}")
        session_id = job.session_id
        if session_id is None:
            return
        self._failures[session_id] = error
        repository = self._services.repository
        if repository is not None:
            repository.mark_failed_if_running(session_id, error)
