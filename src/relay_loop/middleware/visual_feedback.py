from __future__ import annotations

import json
from collections.abc import Sequence

from loguru import logger

from relay_loop.middleware.base import BaseMiddleware, ResultsNext
from relay_loop.models import ToolResult
from relay_loop.renderer import DEFAULT_VIEWPORTS, Renderer, Viewports

VISUAL_FEEDBACK_TOOL_NAME = "_visual_feedback"

REVIEW_PROMPT = (
    "Review the visual result. If there are design problems (contrast, spacing, "
    "hierarchy, balance), use the available tools to fix them. If everything looks "
    "professional, finish."
)


class VisualFeedback(BaseMiddleware):
    """Feeds screenshots of a freshly built preview back to the model.

    After the inner chain returns, the first successful result of a trigger
    tool is inspected for a preview URL. The renderer captures it at each
    configured viewport and the images are appended as one extra result.
    Any failure is logged and the results pass through unchanged.
    """

    name = "visual_feedback"

    def __init__(
        self,
        renderer: Renderer,
        *,
        trigger_tools: Sequence[str] = ("assemble_site",),
        preview_url_key: str = "preview_url",
        viewports: Viewports | None = None,
    ):
        self._renderer = renderer
        self._trigger_tools = tuple(trigger_tools)
        self._preview_url_key = preview_url_key
        self._viewports = viewports or DEFAULT_VIEWPORTS

    async def after_tool_execution(self, results: list[ToolResult], next: ResultsNext) -> list[ToolResult]:
        results = await next(results)
        try:
            return await self._with_screenshots(results)
        except Exception as ex:
            logger.warning(f"Visual feedback failed: {type(ex).__name__}: {ex}")
            return results

    async def _with_screenshots(self, results: list[ToolResult]) -> list[ToolResult]:
        trigger = _find_trigger(results, self._trigger_tools)
        if trigger is None:
            return results

        preview_url = self._extract_preview_url(trigger)
        if not preview_url:
            return results

        try:
            screenshots = await self._renderer.capture(preview_url, self._viewports)
        except Exception as ex:
            logger.warning(f"Visual feedback failed: {type(ex).__name__}: {ex}, preview_url={preview_url}")
            return results

        blocks: list[dict] = [
            {
                "type": "image",
                "source": {"type": "base64", "media_type": "image/png", "data": data},
            }
            for data in screenshots.values()
        ]
        blocks.append({"type": "text", "text": REVIEW_PROMPT})

        logger.info(f"Visual feedback captured: preview_url={preview_url}, viewports={list(screenshots)}")
        return [
            *results,
            ToolResult(
                tool_use_id=f"{trigger.tool_use_id}_visual",
                tool_name=VISUAL_FEEDBACK_TOOL_NAME,
                content=blocks,
            ),
        ]

    def _extract_preview_url(self, result: ToolResult) -> str | None:
        content = result.content
        if isinstance(content, str):
            try:
                content = json.loads(content)
            except json.JSONDecodeError:
                return None
        if isinstance(content, dict):
            url = content.get(self._preview_url_key)
            return url if isinstance(url, str) and url else None
        return None


def _find_trigger(results: list[ToolResult], trigger_tools: Sequence[str]) -> ToolResult | None:
    for result in results:
        if result.tool_name in trigger_tools and not result.is_error:
            return result
    return None
