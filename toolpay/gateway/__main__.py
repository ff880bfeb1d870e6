"""Run a stand-alone tool gateway configured from TOOLPAY_* variables.

    TOOLPAY_RPC_URL=... TOOLPAY_TOOLS_FILE=tools.json python -m toolpay.gateway
"""

import argparse
import logging

import uvicorn
from eth_account import Account

from ..chain import Web3ChainClient
from ..config import ToolPaySettings
from ..constants import MODE_ESCROW
from ..oracle import PriceOracle
from .fastapi import create_app
from .server import ToolGateway
from .tools import load_tool_routes
from .types import EscrowSettlement, PayToClaimSettlement


def build_gateway(settings: ToolPaySettings) -> ToolGateway:
    gw = settings.gateway
    chain = Web3ChainClient(
        settings.rpc_url,
        chain_id=settings.chain_id,
        network=gw.network,
        unit=gw.unit,
        explorer_tx_url=settings.explorer_tx_url,
    )

    if gw.mode == MODE_ESCROW:
        signer = Account.from_key(gw.escrow_private_key) if gw.escrow_private_key else None
        settlement = EscrowSettlement(escrow_address=gw.escrow_address, signer=signer)
    else:
        settlement = PayToClaimSettlement(
            result_ttl=gw.result_ttl,
            sweep_interval=gw.sweep_interval,
            bind_payments=gw.bind_payments,
        )

    receipt_signer = Account.from_key(gw.receipt_private_key) if gw.receipt_private_key else None
    routes = load_tool_routes(gw.tools_file) if gw.tools_file else []

    return ToolGateway(
        chain,
        PriceOracle(),
        settlement,
        routes=routes,
        settings=gw,
        confirmation=settings.confirmation,
        receipt_signer=receipt_signer,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="x402 tool gateway")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=4021)
    parser.add_argument("--env-file", default=None)
    args = parser.parse_args()

    settings = ToolPaySettings.from_env(args.env_file)
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not settings.rpc_url:
        raise SystemExit("TOOLPAY_RPC_URL is required")

    app = create_app(build_gateway(settings))
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
