from loguru import logger

from relay_loop.middleware.base import BaseMiddleware, ResponseNext, ResultsNext
from relay_loop.models import ProviderResponse, ToolResult


class LogTurns(BaseMiddleware):
    name = "log_turns"

    def __init__(self, *, log_responses: bool = False):
        self._log_responses = log_responses

    async def after_response(self, response: ProviderResponse, next: ResponseNext) -> ProviderResponse:
        logger.info(
            f"Turn response: id={response.id}, stop_reason={response.stop_reason.value}, "
            f"tool_calls={len(response.tool_calls)}, input_tokens={response.input_tokens}, "
            f"output_tokens={response.output_tokens}, has_text={response.text_content is not None}"
        )
        if self._log_responses and response.text_content:
            logger.debug(f"Response text: {response.text_content}")
        return await next(response)

    async def after_tool_execution(self, results: list[ToolResult], next: ResultsNext) -> list[ToolResult]:
        for result in results:
            logger.info(
                f"Tool executed: name={result.tool_name}, id={result.tool_use_id}, "
                f"is_error={result.is_error}"
            )
        return await next(results)
