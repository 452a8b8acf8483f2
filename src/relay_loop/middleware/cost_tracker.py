from loguru import logger

from relay_loop.middleware.base import BaseMiddleware, ResponseNext
from relay_loop.models import ProviderResponse
from relay_loop.pricing import estimate_cost
from relay_loop.session_config import DEFAULT_MODEL


class CostTracker(BaseMiddleware):
    """Logs the running cost estimate of one session run."""

    name = "cost_tracker"

    def __init__(self, model: str = DEFAULT_MODEL):
        self.model = model
        self.cumulative_input_tokens = 0
        self.cumulative_output_tokens = 0

    @property
    def estimated_cost_usd(self) -> float:
        return estimate_cost(self.model, self.cumulative_input_tokens, self.cumulative_output_tokens)

    async def after_response(self, response: ProviderResponse, next: ResponseNext) -> ProviderResponse:
        self.cumulative_input_tokens += response.input_tokens
        self.cumulative_output_tokens += response.output_tokens
        logger.info(
            f"Cost tracker: model={self.model}, turn_input={response.input_tokens}, "
            f"turn_output={response.output_tokens}, cumulative_input={self.cumulative_input_tokens}, "
            f"cumulative_output={self.cumulative_output_tokens}, "
            f"estimated_cost_usd={self.estimated_cost_usd:.6f}"
        )
        return await next(response)
