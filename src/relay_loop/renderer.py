from __future__ import annotations

import base64
from collections.abc import Mapping, Sequence
from typing import Protocol, runtime_checkable

import httpx

Viewports = Mapping[str, Sequence[int]]

DEFAULT_VIEWPORTS: dict[str, tuple[int, int]] = {"desktop": (1440, 900)}
_TIMEOUT_SECONDS = 60


@runtime_checkable
class Renderer(Protocol):
    async def capture(self, url: str, viewports: Viewports) -> dict[str, str]:
        """Return base64-encoded PNG screenshots keyed by viewport name."""
        ...


class HttpRenderer:
    """Client for a screenshot service that answers a POST with PNG bytes."""

    def __init__(
        self,
        endpoint: str,
        *,
        timeout_seconds: float = _TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def capture(self, url: str, viewports: Viewports) -> dict[str, str]:
        screenshots: dict[str, str] = {}
        async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
            for viewport, size in viewports.items():
                width, height = int(size[0]), int(size[1])
                response = await client.post(
                    self._endpoint,
                    json={"url": url, "width": width, "height": height},
                )
                response.raise_for_status()
                screenshots[viewport] = base64.b64encode(response.content).decode("ascii")
        return screenshots
