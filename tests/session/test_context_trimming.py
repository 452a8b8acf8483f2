import unittest

from relay_loop.compaction import (
    estimate_message_tokens,
    estimate_text_tokens,
    estimate_tokens,
    trim_messages,
)


def _conversation(count: int) -> list[dict]:
    messages = []
    for i in range(count):
        role = "user" if i % 2 == 0 else "assistant"
        messages.append({"role": role, "content": f"message {i} " + "x" * 40})
    return messages


def _tool_use(call_id: str) -> dict:
    return {"role": "assistant", "content": [{"type": "tool_use", "id": call_id, "name": "t", "input": {}}]}


def _tool_result(call_id: str) -> dict:
    return {"role": "user", "content": [{"type": "tool_result", "tool_use_id": call_id, "content": "ok"}]}


class EstimateTests(unittest.TestCase):
    def test_four_bytes_per_token_rounded_up(self) -> None:
        self.assertEqual(0, estimate_text_tokens(""))
        self.assertEqual(1, estimate_text_tokens("abcd"))
        self.assertEqual(2, estimate_text_tokens("abcde"))
        # Multi-byte characters count by their UTF-8 length.
        self.assertEqual(2, estimate_text_tokens("ééé"))

    def test_block_content_is_serialized(self) -> None:
        message = _tool_result("c1")
        self.assertGreater(estimate_message_tokens(message), 10)

    def test_includes_system_prompt(self) -> None:
        messages = [{"role": "user", "content": "abcd"}]
        self.assertEqual(estimate_tokens("", messages) + 2, estimate_tokens("abcdefgh", messages))


class TrimMessagesTests(unittest.TestCase):
    def test_within_budget_returns_same_list(self) -> None:
        messages = _conversation(12)
        self.assertIs(messages, trim_messages("", messages, budget=1_000_000))

    def test_drops_middle_and_inserts_marker(self) -> None:
        messages = _conversation(12)

        trimmed = trim_messages("", messages, budget=10)

        self.assertEqual(8, len(trimmed))
        self.assertIs(messages[0], trimmed[0])
        self.assertEqual("user", trimmed[1]["role"])
        self.assertIn("5 previous turns were trimmed", trimmed[1]["content"])
        self.assertEqual(messages[6:], trimmed[2:])
        self.assertEqual(12, len(messages))

    def test_boundary_keeps_tool_use_with_its_result(self) -> None:
        messages = _conversation(5) + [_tool_use("c1"), _tool_result("c1")] + _conversation(5)
        # Index 6 is the tool result, the natural tail start for 12 messages.
        self.assertEqual("tool_result", messages[6]["content"][0]["type"])

        trimmed = trim_messages("", messages, budget=10)

        self.assertIn("4 previous turns were trimmed", trimmed[1]["content"])
        self.assertEqual(messages[5], trimmed[2])
        self.assertEqual(messages[6], trimmed[3])

    def test_orphaned_result_goes_with_dropped_span(self) -> None:
        tail = [{"role": "assistant" if i % 2 == 0 else "user", "content": f"reply {i} " + "y" * 40} for i in range(5)]
        messages = [_conversation(1)[0], _tool_use("c1"), _tool_result("c1"), *tail]
        # For 8 messages the natural tail start is index 2, the tool result.
        self.assertEqual("tool_result", messages[2]["content"][0]["type"])

        trimmed = trim_messages("", messages, budget=10)

        self.assertEqual(7, len(trimmed))
        self.assertIs(messages[0], trimmed[0])
        self.assertIn("2 previous turns were trimmed", trimmed[1]["content"])
        self.assertEqual(tail, trimmed[2:])
        self.assertNotIn(messages[1], trimmed)
        self.assertNotIn(messages[2], trimmed)

    def test_too_short_to_trim(self) -> None:
        messages = _conversation(7)
        self.assertIs(messages, trim_messages("", messages, budget=1))

    def test_custom_tail(self) -> None:
        messages = _conversation(10)
        trimmed = trim_messages("", messages, budget=1, preserved_tail=2)
        self.assertEqual([messages[0], trimmed[1], messages[8], messages[9]], trimmed)


if __name__ == "__main__":
    unittest.main()
