from __future__ import annotations

import asyncio
import json
from collections import deque
from collections.abc import Iterable
from uuid import uuid4

from loguru import logger

from relay_loop.events import EVENT_KINDS, Event, utc_now
from relay_loop.store.store import SqliteStore

_INSERT_EVENT = """
INSERT INTO events (id, session_id, type, payload_json, created_at)
VALUES (?, ?, ?, ?, ?)
"""


class BroadcastSink:
    """Event subscriber that persists selected event kinds to the ``events`` table.

    Events are buffered in memory and written in batches by a background task
    every ``flush_interval_seconds``. ``close()`` stops the task and writes
    whatever is still buffered; events arriving after that are dropped.
    """

    def __init__(
        self,
        store: SqliteStore,
        enabled_kinds: Iterable[str] = EVENT_KINDS,
        *,
        batch_size: int = 50,
        flush_interval_seconds: float = 0.5,
    ):
        self._store = store
        self._enabled_kinds = frozenset(enabled_kinds)
        self._batch_size = max(1, batch_size)
        self._interval = max(0.05, flush_interval_seconds)
        self._pending: deque[tuple[str, str, dict]] = deque()
        self._flusher: asyncio.Task | None = None
        self._accepting = True

    @property
    def enabled_kinds(self) -> frozenset[str]:
        return self._enabled_kinds

    @property
    def pending(self) -> int:
        return len(self._pending)

    def __call__(self, event: Event) -> None:
        if self._accepting and event.kind in self._enabled_kinds:
            self._pending.append((event.session_id, event.kind, event.to_payload()))

    async def start(self) -> None:
        if self._flusher is None:
            self._flusher = asyncio.create_task(self._flush_periodically())

    async def close(self) -> None:
        self._accepting = False
        flusher, self._flusher = self._flusher, None
        if flusher is not None:
            flusher.cancel()
            await asyncio.gather(flusher, return_exceptions=True)
        while self._pending:
            self._write_batch()

    async def _flush_periodically(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            while self._pending:
                try:
                    self._write_batch()
                except Exception as ex:
                    logger.error(f"Event broadcast flush failed: {ex}")
                    break

    def _write_batch(self) -> None:
        count = min(self._batch_size, len(self._pending))
        batch = [self._pending.popleft() for _ in range(count)]
        if not batch:
            return
        created_at = utc_now()
        rows = [
            (str(uuid4()), session_id, kind, json.dumps(payload, ensure_ascii=True), created_at)
            for session_id, kind, payload in batch
        ]
        with self._store.transaction():
            self._store.executemany(_INSERT_EVENT, rows)
        logger.debug(f"Broadcast {len(rows)} event(s)")
