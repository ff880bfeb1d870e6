"""Tool gateway: serves tools behind HTTP 402 payments."""

from .fastapi import create_app, create_router
from .modes import EscrowModeHandler, PayToClaimModeHandler
from .server import PaymentProof, ToolGateway
from .tools import CallableTool, HttpProxyTool, load_tool_routes
from .types import (
    EscrowSettlement,
    GatewayRequest,
    GatewayResponse,
    PayToClaimSettlement,
    Settlement,
    ToolHandler,
    ToolOutcome,
    ToolRoute,
)
from .verify import PaymentVerifier, ReplayGuard, VerifiedPayment, verify_mandate

__all__ = [
    "ToolGateway",
    "PaymentProof",
    "EscrowModeHandler",
    "PayToClaimModeHandler",
    "create_app",
    "create_router",
    "CallableTool",
    "HttpProxyTool",
    "load_tool_routes",
    "ToolHandler",
    "ToolOutcome",
    "ToolRoute",
    "EscrowSettlement",
    "PayToClaimSettlement",
    "Settlement",
    "GatewayRequest",
    "GatewayResponse",
    "PaymentVerifier",
    "ReplayGuard",
    "VerifiedPayment",
    "verify_mandate",
]
