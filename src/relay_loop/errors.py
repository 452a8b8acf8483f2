"""Exception hierarchy for relay_loop."""

from __future__ import annotations


class RelayLoopError(Exception):
    """Base exception for all relay_loop errors."""


class ProviderError(RelayLoopError):
    """The provider call failed after retries, or the provider is not configured."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class UnknownToolError(RelayLoopError):
    """A tool name was not found in the toolkit or tool registry."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool [{name}] is not registered in the toolkit.")
        self.name = name


class ConcurrencyLimitExceeded(RelayLoopError):
    """Too many sessions are already running."""

    def __init__(self, running: int, limit: int) -> None:
        super().__init__(
            f"Concurrency limit reached: {running}/{limit} sessions are currently running."
        )
        self.running = running
        self.limit = limit


class SessionStateError(RelayLoopError):
    """A session operation was attempted in the wrong lifecycle state."""


class RateLimitExceeded(RelayLoopError):
    """The rate limiter middleware saw more turns than it allows."""
