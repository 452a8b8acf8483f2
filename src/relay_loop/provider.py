from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from relay_loop.models import ProviderResponse, ToolDefinition
from relay_loop.session_config import SessionConfig

SUPPORTED_PROVIDERS = ("anthropic", "openai", "openrouter")


@runtime_checkable
class LLMProvider(Protocol):
    async def complete(
        self,
        system_prompt: str,
        messages: list[dict],
        tools: list[ToolDefinition],
        config: SessionConfig,
    ) -> ProviderResponse:
        """Send one completion request.

        ``messages`` use the internal (Anthropic-style) block format. Raises
        ``ProviderError`` once retries are exhausted.
        """
        ...


@dataclass(frozen=True)
class ProviderSettings:
    api_key: str = ""
    base_url: str | None = None
    site_url: str | None = None
    site_name: str | None = None


def create_provider(provider_name: str, settings: ProviderSettings) -> LLMProvider:
    """Factory: create an LLMProvider by name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from relay_loop.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(settings.api_key, base_url=settings.base_url)
    if name == "openai":
        from relay_loop.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(settings.api_key, base_url=settings.base_url)
    if name == "openrouter":
        from relay_loop.providers.openrouter_provider import OpenRouterProvider
        return OpenRouterProvider(
            settings.api_key,
            base_url=settings.base_url,
            site_url=settings.site_url,
            site_name=settings.site_name,
        )
    raise ValueError(
        f"Unknown provider: {provider_name!r}. Supported: {', '.join(map(repr, SUPPORTED_PROVIDERS))}"
    )
