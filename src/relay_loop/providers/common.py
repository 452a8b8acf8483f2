from __future__ import annotations

from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_fixed

from relay_loop.session_config import SessionConfig


def is_retryable_status(status_code: int | None) -> bool:
    return status_code is not None and (status_code == 429 or status_code >= 500)


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    status = getattr(exc, "status_code", None)
    logger.warning(
        f"{reason} (HTTP {status}). Retrying in {wait:.1f}s "
        f"(attempt {attempt}/{retry_state.retry_object.stop.max_attempt_number})..."
    )


def status_retrying(
    config: SessionConfig,
    status_error_types: tuple[type[BaseException], ...],
) -> AsyncRetrying:
    """Fixed-interval retry on HTTP 5xx/429 only, ``config.retry_times`` attempts in total."""

    def _should_retry(exc: BaseException) -> bool:
        return isinstance(exc, status_error_types) and is_retryable_status(
            getattr(exc, "status_code", None)
        )

    return AsyncRetrying(
        retry=retry_if_exception(_should_retry),
        wait=wait_fixed(max(0, config.retry_sleep_ms) / 1000),
        stop=stop_after_attempt(max(1, config.retry_times)),
        before_sleep=_on_retry,
        reraise=True,
    )


def join_text(parts: list[str]) -> str | None:
    return "\n".join(parts) if parts else None
