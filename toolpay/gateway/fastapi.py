"""FastAPI surface for the tool gateway."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from ..constants import ERR_INVALID_BODY, MODE_ESCROW
from .server import ToolGateway
from .types import GatewayRequest

logger = logging.getLogger(__name__)


def create_router(gateway: ToolGateway) -> APIRouter:
    """Build the gateway routes: tool calls plus read-only info endpoints."""
    router = APIRouter()

    @router.post("/tools/{tool_name}")
    async def call_tool(tool_name: str, request: Request) -> JSONResponse:
        raw = await request.body()
        try:
            params: Any = json.loads(raw) if raw.strip() else {}
        except ValueError:
            return JSONResponse(
                {"success": False, "error": "Request body must be JSON", "code": ERR_INVALID_BODY},
                status_code=400,
            )
        if not isinstance(params, dict):
            return JSONResponse(
                {"success": False, "error": "Request body must be a JSON object", "code": ERR_INVALID_BODY},
                status_code=400,
            )

        result = await gateway.handle(
            GatewayRequest(tool_name=tool_name, params=params, headers=dict(request.headers))
        )
        return JSONResponse(result.body, status_code=result.status_code, headers=result.headers)

    @router.get("/tools")
    async def list_tools() -> dict[str, Any]:
        tools = []
        for route in gateway.routes:
            paid = gateway.is_paid(route)
            tools.append(
                {
                    "name": route.name,
                    "description": route.description,
                    "priceUSD": str(route.price) if paid else "0",
                    "paid": paid,
                    "provider": route.provider_address if paid else None,
                }
            )
        return {"tools": tools, "mode": gateway.mode}

    @router.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "mode": gateway.mode,
            "network": gateway.chain.network,
            "tools": len(gateway.routes),
        }

    @router.get("/escrow-info")
    async def escrow_info() -> JSONResponse:
        if gateway.mode != MODE_ESCROW:
            return JSONResponse(
                {"success": False, "error": "Gateway is not running in escrow mode"},
                status_code=404,
            )
        return JSONResponse(gateway.info())

    return router


def create_app(gateway: ToolGateway) -> FastAPI:
    """FastAPI app whose lifespan starts and stops the gateway's background work."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await gateway.start()
        logger.info(f"Tool gateway started in {gateway.mode} mode on {gateway.chain.network}")
        try:
            yield
        finally:
            await gateway.stop()

    app = FastAPI(title="x402 tool gateway", lifespan=lifespan)
    app.include_router(create_router(gateway))
    return app
