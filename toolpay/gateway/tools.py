"""Tool handler implementations and route loading."""

from __future__ import annotations

import inspect
import json
import logging
from pathlib import Path
from typing import Any, Callable

import httpx

from ..constants import TOOL_PROXY_TIMEOUT
from .types import ToolOutcome, ToolRoute

logger = logging.getLogger(__name__)


class CallableTool:
    """Wraps a sync or async Python callable taking the params dict.

    A raised exception becomes a failed outcome. A returned ToolOutcome is
    passed through unchanged; any other return value is the result data.
    """

    def __init__(self, func: Callable[[dict[str, Any]], Any]):
        self._func = func

    async def execute(self, params: dict[str, Any]) -> ToolOutcome:
        try:
            result = self._func(params)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.warning(f"Tool {getattr(self._func, '__name__', self._func)} raised: {e}")
            return ToolOutcome.failure(str(e) or type(e).__name__)
        if isinstance(result, ToolOutcome):
            return result
        return ToolOutcome.success(result)


class HttpProxyTool:
    """Forwards params as a JSON POST to an upstream tool endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = TOOL_PROXY_TIMEOUT,
        headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self._timeout = timeout
        self._headers = headers or {}
        self._http_client = http_client

    async def execute(self, params: dict[str, Any]) -> ToolOutcome:
        try:
            if self._http_client is not None:
                response = await self._post(self._http_client, params)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await self._post(client, params)
        except httpx.TimeoutException:
            return ToolOutcome.failure(f"Tool timed out after {self._timeout}s")
        except httpx.HTTPError as e:
            return ToolOutcome.failure(f"Tool request failed: {e}")

        if not response.is_success:
            return ToolOutcome.failure(f"Tool returned status {response.status_code}")

        try:
            return ToolOutcome.success(response.json())
        except ValueError:
            return ToolOutcome.success(response.text)

    async def _post(self, client: httpx.AsyncClient, params: dict[str, Any]) -> httpx.Response:
        return await client.post(
            self.url,
            json=params,
            headers={"Content-Type": "application/json", **self._headers},
            timeout=self._timeout,
        )


def load_tool_routes(
    path: str | Path,
    http_client: httpx.AsyncClient | None = None,
) -> list[ToolRoute]:
    """Load proxy tool routes from a JSON file.

    The file holds a list of objects with `name`, `targetUrl`, and optional
    `priceUSD`, `walletAddress`, `description` and `timeout`.

    Raises:
        ValueError: If an entry is missing `name` or `targetUrl`.
    """
    entries = json.loads(Path(path).read_text(encoding="utf-8"))
    routes = []
    for entry in entries:
        if not entry.get("name") or not entry.get("targetUrl"):
            raise ValueError(f"Tool entry needs name and targetUrl: {entry}")
        routes.append(
            ToolRoute(
                name=entry["name"],
                handler=HttpProxyTool(
                    entry["targetUrl"],
                    timeout=float(entry.get("timeout", TOOL_PROXY_TIMEOUT)),
                    http_client=http_client,
                ),
                price_usd=str(entry.get("priceUSD", "0")),
                provider_address=entry.get("walletAddress"),
                description=entry.get("description", ""),
            )
        )
    logger.info(f"Loaded {len(routes)} tools from {path}")
    return routes
