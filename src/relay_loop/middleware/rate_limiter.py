from relay_loop.errors import RateLimitExceeded
from relay_loop.middleware.base import BaseMiddleware, ResponseNext
from relay_loop.models import ProviderResponse


class RateLimiter(BaseMiddleware):
    name = "rate_limiter"

    def __init__(self, max_turns: int = 50):
        self.max_turns = max_turns
        self.turns_processed = 0

    async def after_response(self, response: ProviderResponse, next: ResponseNext) -> ProviderResponse:
        self.turns_processed += 1
        if self.turns_processed > self.max_turns:
            raise RateLimitExceeded(f"Rate limiter: exceeded maximum of {self.max_turns} turns.")
        return await next(response)
