from tests.store.base import StoreTestCase


class SessionRepositoryTests(StoreTestCase):
    def test_create_and_get(self) -> None:
        self._create(
            "s1",
            context={"a": 1},
            config={"max_turns": 3},
            blueprint={"name": "session-s1"},
            initial_message="hello",
            started_at="2026-01-01T00:00:00+00:00",
        )

        record = self._repository.get_session("s1")

        self.assertEqual("pending", record.status)
        self.assertEqual({"a": 1}, record.context)
        self.assertEqual({"max_turns": 3}, record.config)
        self.assertEqual({"name": "session-s1"}, record.blueprint)
        self.assertEqual("hello", record.initial_message)
        self.assertIsNone(record.result)
        self.assertEqual(0, record.total_turns)
        self.assertIsNone(self._repository.get_session("missing"))

    def test_update_session(self) -> None:
        self._create("s1")
        self._repository.update_session(
            "s1",
            status="completed",
            total_turns=2,
            estimated_cost_usd=0.25,
            result={"message": "done"},
        )

        record = self._repository.get_session("s1")
        self.assertEqual("completed", record.status)
        self.assertEqual(2, record.total_turns)
        self.assertEqual(0.25, record.estimated_cost_usd)
        self.assertEqual({"message": "done"}, record.result)

    def test_update_rejects_unknown_fields(self) -> None:
        self._create("s1")
        with self.assertRaises(ValueError):
            self._repository.update_session("s1", name="renamed")

    def test_turns_are_ordered(self) -> None:
        self._create("s1")
        self._repository.create_turn("s1", turn_number=2, type="assistant", content=[{"type": "text", "text": "b"}])
        self._repository.create_turn("s1", turn_number=1, type="assistant", content="a", input_tokens=5)
        self._repository.create_turn("s1", turn_number=1, type="tool_result", content=[], tool_results=[{"x": 1}])

        turns = self._repository.list_turns("s1")

        self.assertEqual([(1, "assistant"), (1, "tool_result"), (2, "assistant")], [(t.turn_number, t.type) for t in turns])
        self.assertEqual("a", turns[0].content)
        self.assertEqual(5, turns[0].input_tokens)
        self.assertEqual([{"x": 1}], turns[1].tool_results)
        self.assertEqual([], turns[1].tool_calls)

    def test_recreate_resets_record_and_turns(self) -> None:
        self._create("s1")
        self._repository.update_session("s1", status="failed", error="boom", total_turns=4)
        self._repository.create_turn("s1", turn_number=1, type="assistant", content="old")

        self._create("s1", name="retry")

        record = self._repository.get_session("s1")
        self.assertEqual("retry", record.name)
        self.assertEqual("pending", record.status)
        self.assertIsNone(record.error)
        self.assertEqual(0, record.total_turns)
        self.assertEqual([], self._repository.list_turns("s1"))

    def test_get_sessions_and_count_by_status(self) -> None:
        for sid in ("a", "b", "c"):
            self._create(sid)
        self._repository.update_session("b", status="running")

        found = self._repository.get_sessions(["a", "b", "zzz"])

        self.assertEqual({"a", "b"}, set(found))
        self.assertEqual({}, self._repository.get_sessions([]))
        self.assertEqual(1, self._repository.count_by_status("running"))
        self.assertEqual(2, self._repository.count_by_status("pending"))
        self.assertEqual(3, len(self._repository.list_sessions(limit=10)))

    def test_mark_failed_if_running(self) -> None:
        self._create("running")
        self._create("done")
        self._repository.update_session("running", status="running")
        self._repository.update_session("done", status="completed")

        self.assertTrue(self._repository.mark_failed_if_running("running", "timed out"))
        self.assertFalse(self._repository.mark_failed_if_running("done", "timed out"))

        self.assertEqual("failed", self._repository.get_session("running").status)
        self.assertEqual("timed out", self._repository.get_session("running").error)
        self.assertEqual("completed", self._repository.get_session("done").status)
