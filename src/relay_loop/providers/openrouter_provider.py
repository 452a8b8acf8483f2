from relay_loop.providers.openai_provider import OpenAIProvider

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterProvider(OpenAIProvider):
    """OpenAI-compatible access to the models routed by OpenRouter."""

    provider_name = "openrouter"
    api_key_env_var = "OPENROUTER_API_KEY"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        site_url: str | None = None,
        site_name: str | None = None,
    ):
        super().__init__(
            api_key,
            base_url=base_url or OPENROUTER_BASE_URL,
            default_headers=ranking_headers(site_url, site_name) or None,
        )


def ranking_headers(site_url: str | None, site_name: str | None) -> dict[str, str]:
    headers: dict[str, str] = {}
    if site_url:
        headers["HTTP-Referer"] = site_url
    if site_name:
        headers["X-Title"] = site_name
    return headers
