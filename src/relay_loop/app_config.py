from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from relay_loop.session_config import DEFAULT_MODEL, SessionConfig

_PROVIDER_ENV_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str


@dataclass
class ProviderOverrides:
    base_url: str | None = None
    site_url: str | None = None
    site_name: str | None = None


@dataclass
class VisualFeedbackSettings:
    enabled: bool = False
    endpoint: str = ""
    trigger_tools: list[str] = field(default_factory=lambda: ["assemble_site"])
    preview_url_key: str = "preview_url"
    viewports: dict[str, list[int]] = field(default_factory=lambda: {"desktop": [1440, 900]})


@dataclass
class JobSettings:
    workers: int = 2
    max_attempts: int = 3
    backoff_seconds: float = 10
    giveup_seconds: float = 3600
    timeout_seconds: float = 1800


@dataclass
class SubAgentSettings:
    system_prompt: str
    tools: list[str]
    model: str | None
    max_turns: int


@dataclass
class AppConfig:
    provider_name: str
    session: SessionConfig
    max_concurrent_sessions: int
    parallel_tools: bool
    max_tool_result_chars: int
    middleware: list[str]
    log_responses: bool
    persist_sessions: bool
    persist_turns: bool
    db_path: str
    prune_after_days: int
    broadcasting_enabled: bool
    broadcast_events: list[str] | None
    visual_feedback: VisualFeedbackSettings
    jobs: JobSettings
    providers: dict[str, ProviderOverrides]
    sub_agents: dict[str, SubAgentSettings]
    log_level: str
    log_consumers: list | None


def load_json_config(path: str | Path | None = None) -> dict:
    config_path = Path(path) if path else Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _parse_visual_feedback(raw: dict | None) -> VisualFeedbackSettings:
    raw = raw or {}
    defaults = VisualFeedbackSettings()
    return VisualFeedbackSettings(
        enabled=_to_bool(raw.get("Enabled"), default=False),
        endpoint=str(raw.get("Endpoint", defaults.endpoint)),
        trigger_tools=list(raw.get("TriggerTools", defaults.trigger_tools)),
        preview_url_key=str(raw.get("PreviewUrlKey", defaults.preview_url_key)),
        viewports={k: list(v) for k, v in raw.get("Viewports", defaults.viewports).items()},
    )


def _parse_jobs(raw: dict | None) -> JobSettings:
    raw = raw or {}
    return JobSettings(
        workers=int(raw.get("Workers", 2)),
        max_attempts=int(raw.get("MaxAttempts", 3)),
        backoff_seconds=float(raw.get("BackoffSeconds", 10)),
        giveup_seconds=float(raw.get("GiveupSeconds", 3600)),
        timeout_seconds=float(raw.get("TimeoutSeconds", 1800)),
    )


def _parse_providers(raw: dict | None) -> dict[str, ProviderOverrides]:
    return {
        name.strip().lower(): ProviderOverrides(
            base_url=entry.get("BaseUrl"),
            site_url=entry.get("SiteUrl"),
            site_name=entry.get("SiteName"),
        )
        for name, entry in (raw or {}).items()
    }


def _parse_sub_agents(raw: dict | None) -> dict[str, SubAgentSettings]:
    return {
        name: SubAgentSettings(
            system_prompt=str(entry.get("SystemPrompt", "")),
            tools=list(entry.get("Tools", [])),
            model=entry.get("Model"),
            max_turns=int(entry.get("MaxTurns", 15)),
        )
        for name, entry in (raw or {}).items()
    }


def parse_app_config(config: dict) -> AppConfig:
    session = SessionConfig(
        max_turns=int(config.get("MaxTurns", 30)),
        max_tokens_per_turn=int(config.get("MaxTokensPerTurn", 4096)),
        model=config.get("Model", DEFAULT_MODEL),
        temperature=float(config.get("Temperature", 1.0)),
        timeout_seconds=int(config.get("TimeoutSeconds", 120)),
        retry_times=int(config.get("RetryTimes", 3)),
        retry_sleep_ms=int(config.get("RetrySleepMs", 1000)),
        context_window_limit=int(config.get("ContextWindowLimit", 200_000)),
        context_reserve_tokens=int(config.get("ContextReserveTokens", 8_192)),
    )
    broadcasting = config.get("Broadcasting") or {}
    broadcast_events = broadcasting.get("Events")
    return AppConfig(
        provider_name=config.get("Provider", "anthropic").strip().lower(),
        session=session,
        max_concurrent_sessions=int(config.get("MaxConcurrentSessions", 10)),
        parallel_tools=_to_bool(config.get("ParallelTools"), default=True),
        max_tool_result_chars=int(config.get("MaxToolResultChars", 40_000)),
        middleware=list(config.get("Middleware", ["log_turns", "cost_tracker"])),
        log_responses=_to_bool(config.get("LogResponses"), default=False),
        persist_sessions=_to_bool(config.get("PersistSessions"), default=True),
        persist_turns=_to_bool(config.get("PersistTurns"), default=True),
        db_path=str(config.get("DbPath", ".relay_loop/sessions.db")),
        prune_after_days=int(config.get("PruneAfterDays", 30)),
        broadcasting_enabled=_to_bool(broadcasting.get("Enabled"), default=False),
        broadcast_events=list(broadcast_events) if broadcast_events is not None else None,
        visual_feedback=_parse_visual_feedback(config.get("VisualFeedback")),
        jobs=_parse_jobs(config.get("Jobs")),
        providers=_parse_providers(config.get("Providers")),
        sub_agents=_parse_sub_agents(config.get("SubAgents")),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    provider_env_var = _PROVIDER_ENV_VARS.get(provider_name, "ANTHROPIC_API_KEY")
    return RuntimeEnv(
        provider_api_key=os.environ.get(provider_env_var, ""),
        provider_env_var=provider_env_var,
    )
