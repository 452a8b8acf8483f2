import json

import openai
from loguru import logger

from relay_loop.errors import ProviderError
from relay_loop.models import (
    ProviderResponse,
    StopReason,
    ToolCall,
    ToolDefinition,
)
from relay_loop.providers.common import status_retrying
from relay_loop.session_config import SessionConfig

# Map OpenAI finish reasons to internal stop reasons; anything else is end_turn.
_STOP_REASON_MAP = {
    "stop": StopReason.END_TURN,
    "tool_calls": StopReason.TOOL_USE,
    "length": StopReason.MAX_TOKENS,
}


def _tool_result_text(content) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            sub.get("text", "")
            for sub in content
            if isinstance(sub, dict) and sub.get("type") == "text"
        )
    return json.dumps(content, ensure_ascii=False)


def _to_openai_messages(
    system_prompt: str,
    messages: list[dict],
) -> list[dict]:
    """Convert internal (Anthropic-style) messages to OpenAI chat format."""
    out: list[dict] = []

    if system_prompt:
        out.append({"role": "system", "content": system_prompt})

    for msg in messages:
        role = msg["role"]
        content = msg.get("content", "")

        if role == "assistant":
            if isinstance(content, str):
                out.append({"role": "assistant", "content": content})
                continue

            text_parts: list[str] = []
            tool_calls: list[dict] = []
            for block in content:
                if block.get("type") == "text":
                    text_parts.append(block["text"])
                elif block.get("type") == "tool_use":
                    tool_calls.append({
                        "id": block["id"],
                        "type": "function",
                        "function": {
                            "name": block["name"],
                            # "{}" rather than "null" when there are no arguments
                            "arguments": json.dumps(block.get("input") or {}),
                        },
                    })

            oai_msg: dict = {"role": "assistant"}
            oai_msg["content"] = "\n".join(text_parts) if text_parts else None
            if tool_calls:
                oai_msg["tool_calls"] = tool_calls
            out.append(oai_msg)

        elif role == "user":
            if isinstance(content, str):
                out.append({"role": "user", "content": content})
                continue

            text_parts_user: list[str] = []
            for block in content:
                if isinstance(block, str):
                    text_parts_user.append(block)
                elif block.get("type") == "text":
                    text_parts_user.append(block["text"])
                elif block.get("type") == "tool_result":
                    out.append({
                        "role": "tool",
                        "tool_call_id": block["tool_use_id"],
                        "content": _tool_result_text(block.get("content", "")),
                    })

            if text_parts_user:
                out.append({"role": "user", "content": "\n".join(text_parts_user)})

        else:
            out.append({
                "role": role,
                "content": content if isinstance(content, str) else json.dumps(content),
            })

    return out


def _to_openai_tools(tools: list[ToolDefinition]) -> list[dict]:
    return [t.to_openai() for t in tools]


def _parse_completion(response) -> ProviderResponse:
    choice = response.choices[0] if response.choices else None
    message = choice.message if choice is not None else None
    finish_reason = (choice.finish_reason if choice is not None else None) or "stop"
    stop_reason = _STOP_REASON_MAP.get(finish_reason, StopReason.END_TURN)

    text_content = (message.content if message is not None else None) or None

    content: list[dict] = []
    tool_calls: list[ToolCall] = []
    if text_content:
        content.append({"type": "text", "text": text_content})

    for tc in (message.tool_calls if message is not None else None) or []:
        call = ToolCall.from_openai_block({
            "id": tc.id,
            "function": {"name": tc.function.name, "arguments": tc.function.arguments},
        })
        content.append({"type": "tool_use", **call.to_dict()})
        tool_calls.append(call)

    usage = response.usage
    return ProviderResponse(
        id=getattr(response, "id", None) or "unknown",
        stop_reason=stop_reason,
        content=content,
        tool_calls=tool_calls,
        input_tokens=usage.prompt_tokens if usage else 0,
        output_tokens=usage.completion_tokens if usage else 0,
        text_content=text_content,
    )


class OpenAIProvider:
    provider_name = "openai"
    api_key_env_var = "OPENAI_API_KEY"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        default_headers: dict[str, str] | None = None,
    ):
        if not api_key:
            raise ProviderError(
                f"{self.api_key_env_var} is not configured. Set it in your environment or .env file.",
                provider=self.provider_name,
            )
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            default_headers=default_headers,
            max_retries=0,
        )

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict],
        tools: list[ToolDefinition],
        config: SessionConfig,
    ) -> ProviderResponse:
        oai_messages = _to_openai_messages(system_prompt, messages)
        kwargs: dict = dict(
            model=config.model,
            max_tokens=config.max_tokens_per_turn,
            temperature=config.temperature,
            messages=oai_messages,
        )
        if tools:
            kwargs["tools"] = _to_openai_tools(tools)

        logger.debug(
            f"API request: provider={self.provider_name}, model={config.model}, "
            f"max_tokens={config.max_tokens_per_turn}, messages={len(oai_messages)}, tools={len(tools)}"
        )
        try:
            async for attempt in status_retrying(config, (openai.APIStatusError,)):
                with attempt:
                    response = await self._client.chat.completions.create(
                        **kwargs,
                        timeout=config.timeout_seconds,
                    )
        except openai.APIStatusError as ex:
            raise ProviderError(
                f"{self.provider_name} API returned HTTP {ex.status_code}: {ex.message}",
                provider=self.provider_name,
                status_code=ex.status_code,
            ) from ex
        except openai.APIError as ex:
            raise ProviderError(
                f"{self.provider_name} API request failed: {ex}",
                provider=self.provider_name,
            ) from ex

        parsed = _parse_completion(response)
        logger.debug(
            f"API response: stop_reason={parsed.stop_reason.value}, "
            f"text_len={len(parsed.text_content or '')}, tool_calls={len(parsed.tool_calls)}"
        )
        return parsed
