import asyncio
import unittest

from relay_loop.errors import ProviderError
from relay_loop.models import SessionStatus
from relay_loop.pipeline import Pipeline
from relay_loop.session import Session
from tests.session.fakes import ScriptedProvider, make_services, text_response


class PipelineTests(unittest.TestCase):
    def test_later_stages_see_earlier_results(self) -> None:
        provider = ScriptedProvider(
            text_response("draft copy", input_tokens=10, output_tokens=5),
            text_response("polished copy", input_tokens=20, output_tokens=5),
        )
        services = make_services(provider)
        writer = Session("writer", services=services)
        editor = Session("editor", services=services)

        result = asyncio.run(Pipeline().pipe(writer, "Write").pipe(editor, "Edit").run())

        self.assertTrue(result.successful())
        self.assertEqual(2, result.stage_count())
        self.assertEqual("polished copy", result.final().final_message)
        self.assertEqual("draft copy", result.stage(0).final_message)
        self.assertIsNone(result.stage(5))
        self.assertEqual(40, result.total_tokens())
        self.assertIsNone(result.first_failure())

        self.assertEqual("Write", provider.calls[0]["messages"][0]["content"])
        second = provider.calls[1]["messages"][0]["content"]
        self.assertTrue(second.startswith("Edit\n\n---\nResults from previous stages:\n```json\n"))
        self.assertIn('"output": "draft copy"', second)
        self.assertIn(f'"agent": "{writer.id}"', second)
        self.assertIn('"stage": 1', second)

    def test_failed_stage_stops_the_pipeline(self) -> None:
        provider = ScriptedProvider(ProviderError("down"))
        services = make_services(provider)
        first = Session("first", services=services)
        second = Session("second", services=services)

        result = asyncio.run(Pipeline().pipe(first, "a").pipe(second, "b").run())

        self.assertFalse(result.successful())
        self.assertEqual(1, result.stage_count())
        self.assertEqual(SessionStatus.FAILED, result.first_failure().status)
        self.assertEqual("down", result.first_failure().error)
        self.assertEqual(SessionStatus.PENDING, second.status)
        self.assertEqual(1, len(provider.calls))

    def test_empty_pipeline(self) -> None:
        result = asyncio.run(Pipeline().run())
        self.assertEqual([], result.all())
        self.assertIsNone(result.final())
        self.assertTrue(result.successful())
        self.assertEqual(0.0, result.total_cost())


if __name__ == "__main__":
    unittest.main()
