from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from relay_loop.app_config import AppConfig, RuntimeEnv
from relay_loop.events import EVENT_KINDS, EventEmitter
from relay_loop.jobs import AsyncJobQueue
from relay_loop.logging_config import setup_logging
from relay_loop.middleware.registry import MiddlewareRegistry, default_middleware_registry
from relay_loop.middleware.visual_feedback import VisualFeedback
from relay_loop.provider import LLMProvider, ProviderSettings, create_provider
from relay_loop.renderer import HttpRenderer
from relay_loop.services import SessionServices
from relay_loop.store import BroadcastSink, SessionRepository, SqliteStore
from relay_loop.tool_registry import ToolRegistry
from relay_loop.tools.spawn_agent_tool import AgentProfile, SpawnAgentTool


@dataclass
class AppRuntime:
    services: SessionServices
    store: SqliteStore | None
    broadcast_sink: BroadcastSink | None
    job_queue: AsyncJobQueue
    log_descriptions: list[str]

    async def close(self) -> None:
        await self.job_queue.close()
        if self.broadcast_sink is not None:
            await self.broadcast_sink.close()
        if self.store is not None:
            self.store.close()


def open_store(db_path: str) -> SqliteStore:
    path = Path(db_path)
    if not path.is_absolute():
        path = Path.cwd() / path
    return SqliteStore(str(path))


def _provider_factory(app: AppConfig, env: RuntimeEnv):
    overrides = app.providers.get(app.provider_name)
    settings = ProviderSettings(
        api_key=env.provider_api_key,
        base_url=overrides.base_url if overrides else None,
        site_url=overrides.site_url if overrides else None,
        site_name=overrides.site_name if overrides else None,
    )

    def factory() -> LLMProvider:
        return create_provider(app.provider_name, settings)

    return factory


def _middleware_registry(app: AppConfig) -> MiddlewareRegistry:
    registry = default_middleware_registry(log_responses=app.log_responses)
    visual = app.visual_feedback
    if visual.enabled:
        renderer = HttpRenderer(visual.endpoint)
        registry.register(
            "visual_feedback",
            lambda config: VisualFeedback(
                renderer,
                trigger_tools=visual.trigger_tools,
                preview_url_key=visual.preview_url_key,
                viewports=visual.viewports,
            ),
        )
    return registry


async def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    store: SqliteStore | None = None
    repository: SessionRepository | None = None
    if app.persist_sessions:
        store = open_store(app.db_path)
        repository = SessionRepository(store)

    events = EventEmitter()
    broadcast_sink: BroadcastSink | None = None
    if app.broadcasting_enabled and store is not None:
        broadcast_sink = BroadcastSink(store, app.broadcast_events or EVENT_KINDS)
        await broadcast_sink.start()
        events.subscribe(broadcast_sink)

    tool_registry = ToolRegistry()
    services = SessionServices(
        provider_factory=_provider_factory(app, env),
        repository=repository,
        events=events,
        tool_registry=tool_registry,
        middleware_registry=_middleware_registry(app),
        global_middleware=list(app.middleware),
        default_config=app.session,
        max_concurrent_sessions=app.max_concurrent_sessions,
        persist_sessions=app.persist_sessions,
        persist_turns=app.persist_turns,
        parallel_tools=app.parallel_tools,
        max_tool_result_chars=app.max_tool_result_chars,
    )

    if app.sub_agents:
        profiles = {
            name: AgentProfile(
                system_prompt=sub.system_prompt,
                tool_names=sub.tools,
                model=sub.model,
                max_turns=sub.max_turns,
            )
            for name, sub in app.sub_agents.items()
        }
        tool_registry.register("spawn_agent", lambda: SpawnAgentTool(services, profiles))

    job_queue = AsyncJobQueue(
        services,
        workers=app.jobs.workers,
        max_attempts=app.jobs.max_attempts,
        backoff_seconds=app.jobs.backoff_seconds,
        giveup_seconds=app.jobs.giveup_seconds,
        timeout_seconds=app.jobs.timeout_seconds,
    )
    services.job_queue = job_queue
    await job_queue.start()

    return AppRuntime(
        services=services,
        store=store,
        broadcast_sink=broadcast_sink,
        job_queue=job_queue,
        log_descriptions=log_descriptions,
    )
