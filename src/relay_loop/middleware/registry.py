from __future__ import annotations

from collections.abc import Iterable
from typing import Callable

from loguru import logger

from relay_loop.middleware.base import Middleware
from relay_loop.middleware.cost_tracker import CostTracker
from relay_loop.middleware.log_turns import LogTurns
from relay_loop.middleware.rate_limiter import RateLimiter
from relay_loop.session_config import SessionConfig

MiddlewareFactory = Callable[[SessionConfig], Middleware]


class MiddlewareRegistry:
    """Builds fresh middleware instances per session run, by name."""

    def __init__(self) -> None:
        self._factories: dict[str, MiddlewareFactory] = {}

    def register(self, name: str, factory: MiddlewareFactory) -> None:
        self._factories[name] = factory

    def has(self, name: str) -> bool:
        return name in self._factories

    def names(self) -> list[str]:
        return list(self._factories)

    def build(self, name: str, config: SessionConfig) -> Middleware:
        factory = self._factories.get(name)
        if factory is None:
            raise KeyError(f"Middleware [{name}] is not registered.")
        return factory(config)

    def build_all(self, entries: Iterable[str | Middleware], config: SessionConfig) -> list[Middleware]:
        """Resolve names through the registry; instances pass through as given."""
        built: list[Middleware] = []
        for entry in entries:
            if isinstance(entry, str):
                built.append(self.build(entry, config))
            else:
                built.append(entry)
        return built

    def name_of(self, middleware: str | Middleware) -> str | None:
        if isinstance(middleware, str):
            return middleware
        name = getattr(middleware, "name", None)
        if name and name in self._factories:
            return name
        logger.warning(
            f"Middleware {type(middleware).__name__} has no registered name and cannot be serialized"
        )
        return None


def default_middleware_registry(*, log_responses: bool = False) -> MiddlewareRegistry:
    registry = MiddlewareRegistry()
    registry.register("log_turns", lambda config: LogTurns(log_responses=log_responses))
    registry.register("cost_tracker", lambda config: CostTracker(config.model))
    registry.register("rate_limiter", lambda config: RateLimiter())
    return registry
