import asyncio
import json
import unittest
from types import SimpleNamespace

import httpx
import openai

from relay_loop.errors import ProviderError
from relay_loop.models import StopReason, ToolCall, ToolDefinition
from relay_loop.provider import ProviderSettings, create_provider
from relay_loop.providers.openai_provider import (
    OpenAIProvider,
    _STOP_REASON_MAP,
    _parse_completion,
    _to_openai_messages,
    _to_openai_tools,
)
from relay_loop.providers.openrouter_provider import OpenRouterProvider, ranking_headers
from relay_loop.session_config import SessionConfig

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _completion(content=None, tool_calls=None, finish_reason="stop"):
    return SimpleNamespace(
        id="chatcmpl_1",
        choices=[SimpleNamespace(
            finish_reason=finish_reason,
            message=SimpleNamespace(content=content, tool_calls=tool_calls),
        )],
        usage=SimpleNamespace(prompt_tokens=7, completion_tokens=3),
    )


def _tool_call(call_id: str, name: str, arguments: str):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


class ToOpenAIMessagesTests(unittest.TestCase):
    def test_system_prompt_becomes_system_message(self) -> None:
        result = _to_openai_messages("You are helpful.", [])
        self.assertEqual([{"role": "system", "content": "You are helpful."}], result)

    def test_user_string_content(self) -> None:
        result = _to_openai_messages("", [{"role": "user", "content": "hello"}])
        self.assertEqual([{"role": "user", "content": "hello"}], result)

    def test_assistant_tool_use_blocks(self) -> None:
        result = _to_openai_messages("", [
            {
                "role": "assistant",
                "content": [
                    {"type": "text", "text": "I'll look that up."},
                    {"type": "tool_use", "id": "call_abc", "name": "lookup", "input": {"q": "x"}},
                    {"type": "tool_use", "id": "call_def", "name": "ping", "input": {}},
                ],
            }
        ])
        self.assertEqual(1, len(result))
        msg = result[0]
        self.assertEqual("I'll look that up.", msg["content"])
        self.assertEqual(["call_abc", "call_def"], [tc["id"] for tc in msg["tool_calls"]])
        self.assertEqual(json.dumps({"q": "x"}), msg["tool_calls"][0]["function"]["arguments"])
        self.assertEqual("{}", msg["tool_calls"][1]["function"]["arguments"])

    def test_assistant_without_text_has_null_content(self) -> None:
        result = _to_openai_messages("", [
            {"role": "assistant", "content": [{"type": "tool_use", "id": "c1", "name": "ping", "input": {}}]}
        ])
        self.assertIsNone(result[0]["content"])

    def test_tool_results_become_tool_messages_before_text(self) -> None:
        result = _to_openai_messages("", [
            {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": "call_1", "content": "result1"},
                    {"type": "tool_result", "tool_use_id": "call_2", "content": [
                        {"type": "text", "text": "part1"},
                        {"type": "text", "text": "part2"},
                    ]},
                    {"type": "text", "text": "Review the visual result."},
                ],
            }
        ])
        self.assertEqual(["tool", "tool", "user"], [m["role"] for m in result])
        self.assertEqual("call_1", result[0]["tool_call_id"])
        self.assertEqual("part1\npart2", result[1]["content"])
        self.assertEqual("Review the visual result.", result[2]["content"])


class ToOpenAIToolsTests(unittest.TestCase):
    def test_converts_definitions_to_function_tools(self) -> None:
        result = _to_openai_tools([
            ToolDefinition("read_file", "Read a file", {"type": "object", "properties": {"path": {"type": "string"}}}),
        ])
        self.assertEqual("function", result[0]["type"])
        self.assertEqual("read_file", result[0]["function"]["name"])
        self.assertIn("properties", result[0]["function"]["parameters"])


class ParseCompletionTests(unittest.TestCase):
    def test_stop_reason_map(self) -> None:
        self.assertEqual(StopReason.END_TURN, _STOP_REASON_MAP["stop"])
        self.assertEqual(StopReason.TOOL_USE, _STOP_REASON_MAP["tool_calls"])
        self.assertEqual(StopReason.MAX_TOKENS, _STOP_REASON_MAP["length"])

    def test_text_completion(self) -> None:
        response = _parse_completion(_completion(content="Hi there"))
        self.assertEqual(StopReason.END_TURN, response.stop_reason)
        self.assertEqual("Hi there", response.text_content)
        self.assertEqual([{"type": "text", "text": "Hi there"}], response.content)
        self.assertEqual((7, 3), (response.input_tokens, response.output_tokens))

    def test_tool_calls_are_decoded(self) -> None:
        response = _parse_completion(_completion(
            tool_calls=[_tool_call("call_1", "add", '{"a": 1, "b": 2}')],
            finish_reason="tool_calls",
        ))
        self.assertEqual(StopReason.TOOL_USE, response.stop_reason)
        self.assertEqual({"a": 1, "b": 2}, response.tool_calls[0].input)
        self.assertEqual(ToolCall("call_1", "add", {"a": 1, "b": 2}), response.tool_calls[0])
        self.assertEqual(
            {"type": "tool_use", "id": "call_1", "name": "add", "input": {"a": 1, "b": 2}},
            response.content[0],
        )
        self.assertIsNone(response.text_content)

    def test_malformed_arguments_become_empty_input(self) -> None:
        response = _parse_completion(_completion(
            tool_calls=[_tool_call("call_1", "add", "{not json")],
            finish_reason="tool_calls",
        ))
        self.assertEqual({}, response.tool_calls[0].input)

    def test_unknown_finish_reason_is_end_turn(self) -> None:
        response = _parse_completion(_completion(content="x", finish_reason="content_filter"))
        self.assertEqual(StopReason.END_TURN, response.stop_reason)


class _FakeCompletions:
    def __init__(self, *outcomes):
        self._outcomes = list(outcomes)
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _with_fake_client(provider: OpenAIProvider, completions: _FakeCompletions) -> OpenAIProvider:
    provider._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return provider


class OpenAIProviderTests(unittest.TestCase):
    def test_missing_api_key_raises(self) -> None:
        with self.assertRaises(ProviderError) as ctx:
            OpenAIProvider("")
        self.assertIn("OPENAI_API_KEY", str(ctx.exception))

    def test_retries_rate_limit(self) -> None:
        error = openai.APIStatusError(
            "slow down",
            response=httpx.Response(429, request=_REQUEST),
            body=None,
        )
        completions = _FakeCompletions(error, _completion(content="done"))
        provider = _with_fake_client(OpenAIProvider("test-key"), completions)

        response = asyncio.run(provider.complete("sys", [], [], SessionConfig(retry_sleep_ms=0)))

        self.assertEqual("done", response.text_content)
        self.assertEqual(2, len(completions.calls))
        self.assertEqual("system", completions.calls[0]["messages"][0]["role"])
        self.assertNotIn("tools", completions.calls[0])

    def test_unauthorized_raises_provider_error(self) -> None:
        error = openai.APIStatusError(
            "bad key",
            response=httpx.Response(401, request=_REQUEST),
            body=None,
        )
        provider = _with_fake_client(OpenAIProvider("test-key"), _FakeCompletions(error))

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.complete("", [], [], SessionConfig(retry_sleep_ms=0)))
        self.assertEqual(401, ctx.exception.status_code)


class OpenRouterProviderTests(unittest.TestCase):
    def test_uses_openrouter_base_url(self) -> None:
        provider = OpenRouterProvider("test-key")
        self.assertIn("openrouter.ai", str(provider._client.base_url))

    def test_missing_key_names_openrouter_variable(self) -> None:
        with self.assertRaises(ProviderError) as ctx:
            OpenRouterProvider("")
        self.assertIn("OPENROUTER_API_KEY", str(ctx.exception))
        self.assertEqual("openrouter", ctx.exception.provider)

    def test_ranking_headers(self) -> None:
        self.assertEqual({}, ranking_headers(None, None))
        self.assertEqual(
            {"HTTP-Referer": "https://example.com", "X-Title": "Example"},
            ranking_headers("https://example.com", "Example"),
        )


class CreateProviderTests(unittest.TestCase):
    def test_known_names(self) -> None:
        settings = ProviderSettings(api_key="test-key")
        self.assertIsInstance(create_provider("OpenAI", settings), OpenAIProvider)
        self.assertIsInstance(create_provider("openrouter", settings), OpenRouterProvider)

    def test_unknown_name_raises(self) -> None:
        with self.assertRaises(ValueError):
            create_provider("bogus", ProviderSettings(api_key="k"))


if __name__ == "__main__":
    unittest.main()
