import anthropic
from loguru import logger

from relay_loop.errors import ProviderError
from relay_loop.models import ProviderResponse, StopReason, ToolCall, ToolDefinition
from relay_loop.providers.common import join_text, status_retrying
from relay_loop.session_config import SessionConfig


def _to_stop_reason(value: str | None) -> StopReason:
    try:
        return StopReason(value or "end_turn")
    except ValueError:
        logger.warning(f"Unknown Anthropic stop_reason {value!r}; treating as end_turn")
        return StopReason.END_TURN


def _parse_message(response) -> ProviderResponse:
    content: list[dict] = []
    tool_calls: list[ToolCall] = []
    text_parts: list[str] = []

    for block in response.content:
        if block.type == "text":
            content.append({"type": "text", "text": block.text})
            text_parts.append(block.text)
        elif block.type == "tool_use":
            tool_block = {
                "type": "tool_use",
                "id": block.id,
                "name": block.name,
                "input": block.input or {},
            }
            content.append(tool_block)
            tool_calls.append(ToolCall.from_anthropic_block(tool_block))

    usage = response.usage
    return ProviderResponse(
        id=response.id,
        stop_reason=_to_stop_reason(response.stop_reason),
        content=content,
        tool_calls=tool_calls,
        input_tokens=usage.input_tokens if usage else 0,
        output_tokens=usage.output_tokens if usage else 0,
        text_content=join_text(text_parts),
    )


class AnthropicProvider:
    provider_name = "anthropic"

    def __init__(self, api_key: str, *, base_url: str | None = None):
        if not api_key:
            raise ProviderError(
                "ANTHROPIC_API_KEY is not configured. Set it in your environment or .env file.",
                provider=self.provider_name,
            )
        # Retries are driven by the session config, not the SDK.
        self._client = anthropic.AsyncAnthropic(api_key=api_key, base_url=base_url, max_retries=0)

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict],
        tools: list[ToolDefinition],
        config: SessionConfig,
    ) -> ProviderResponse:
        payload: dict = dict(
            model=config.model,
            max_tokens=config.max_tokens_per_turn,
            temperature=config.temperature,
            messages=messages,
        )
        if system_prompt:
            payload["system"] = system_prompt
        if tools:
            payload["tools"] = [t.to_anthropic() for t in tools]

        logger.debug(
            f"API request: provider=anthropic, model={config.model}, "
            f"max_tokens={config.max_tokens_per_turn}, messages={len(messages)}, tools={len(tools)}"
        )
        try:
            async for attempt in status_retrying(config, (anthropic.APIStatusError,)):
                with attempt:
                    response = await self._client.messages.create(
                        **payload,
                        timeout=config.timeout_seconds,
                    )
        except anthropic.APIStatusError as ex:
            raise ProviderError(
                f"Anthropic API returned HTTP {ex.status_code}: {ex.message}",
                provider=self.provider_name,
                status_code=ex.status_code,
            ) from ex
        except anthropic.APIError as ex:
            raise ProviderError(
                f"Anthropic API request failed: {ex}",
                provider=self.provider_name,
            ) from ex

        parsed = _parse_message(response)
        logger.debug(
            f"API response: stop_reason={parsed.stop_reason.value}, "
            f"input_tokens={parsed.input_tokens}, output_tokens={parsed.output_tokens}"
        )
        return parsed
