import asyncio

from relay_loop.events import EventEmitter, SessionFailed, SessionStarted
from relay_loop.store import BroadcastSink, fail_stale_sessions, prune_sessions
from tests.store.base import StoreTestCase


class StaleSessionTests(StoreTestCase):
    def test_only_old_running_sessions_fail(self) -> None:
        self._create("stale", started_at="2000-01-01T00:00:00+00:00")
        self._create("fresh", started_at="2999-01-01T00:00:00+00:00")
        self._create("old-done", started_at="2000-01-01T00:00:00+00:00")
        self._repository.update_session("stale", status="running")
        self._repository.update_session("fresh", status="running")
        self._repository.update_session("old-done", status="completed")

        count = fail_stale_sessions(self._store, timeout_minutes=60)

        self.assertEqual(1, count)
        stale = self._repository.get_session("stale")
        self.assertEqual("failed", stale.status)
        self.assertIn("60 minutes", stale.error)
        self.assertEqual("running", self._repository.get_session("fresh").status)
        self.assertEqual("completed", self._repository.get_session("old-done").status)


class PruneSessionsTests(StoreTestCase):
    def test_prunes_old_sessions_with_turns_and_events(self) -> None:
        self._create("old")
        self._create("new")
        self._repository.create_turn("old", turn_number=1, type="assistant", content="x")
        self._store.execute(
            "INSERT INTO events (id, session_id, type, payload_json, created_at) VALUES ('e1', 'old', 'x', '{}', ?)",
            ("2000-01-01T00:00:00+00:00",),
        )
        self._store.execute("UPDATE sessions SET created_at = '2000-01-01T00:00:00+00:00' WHERE id = 'old'")
        self._store.commit()

        pruned = prune_sessions(self._store, older_than_days=30)

        self.assertEqual(1, pruned)
        self.assertIsNone(self._repository.get_session("old"))
        self.assertIsNotNone(self._repository.get_session("new"))
        self.assertEqual([], self._repository.list_turns("old"))
        row = self._store.execute("SELECT COUNT(*) AS c FROM events").fetchone()
        self.assertEqual(0, int(row["c"]))


class BroadcastSinkTests(StoreTestCase):
    def test_flushes_enabled_kinds_only(self) -> None:
        sink = BroadcastSink(self._store, [SessionStarted.kind], batch_size=10, flush_interval_seconds=0.05)
        events = EventEmitter()
        events.subscribe(sink)

        async def scenario() -> None:
            await sink.start()
            events.emit(SessionStarted(session_id="s1", name="first"))
            events.emit(SessionFailed(session_id="s1", error="boom"))
            events.emit(SessionStarted(session_id="s2", name="second"))
            await asyncio.sleep(0.12)
            await sink.close()

        asyncio.run(scenario())

        rows = self._store.execute("SELECT session_id, type FROM events ORDER BY session_id").fetchall()
        self.assertEqual([("s1", "session.started"), ("s2", "session.started")], [tuple(r) for r in rows])

    def test_close_flushes_pending_events(self) -> None:
        sink = BroadcastSink(self._store, batch_size=1, flush_interval_seconds=60)

        async def scenario() -> None:
            await sink.start()
            for i in range(3):
                sink(SessionStarted(session_id=f"s{i}", name="n"))
            await sink.close()
            sink(SessionStarted(session_id="late", name="n"))

        asyncio.run(scenario())

        row = self._store.execute("SELECT COUNT(*) AS c FROM events").fetchone()
        self.assertEqual(3, int(row["c"]))
