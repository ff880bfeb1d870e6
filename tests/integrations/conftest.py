"""Gateway + client wiring over an in-process ASGI transport."""

import time
from decimal import Decimal

import httpx
import pytest

from toolpay import PaymentClient
from toolpay.config import ConfirmationSettings, GatewaySettings
from toolpay.constants import MODE_ESCROW
from toolpay.gateway import (
    EscrowSettlement,
    PayToClaimSettlement,
    ToolGateway,
    ToolRoute,
    create_app,
)
from toolpay.oracle import FixedPriceOracle

from ..conftest import PROVIDER_ADDRESS, TEST_RATE
from ..mocks import RecordingTool

BASE_URL = "http://testserver"
PRICE_SATS = 2500  # $0.01 at $400/BCH
ESCROW_FEE_FLOAT = 1_000_000

FAST = ConfirmationSettings(max_attempts=3, delay=0)


def paid_route(tool, name: str = "weather", price: str = "0.01") -> ToolRoute:
    return ToolRoute(
        name=name,
        handler=tool,
        price_usd=price,
        provider_address=PROVIDER_ADDRESS,
        description="Current weather",
    )


def free_route(tool, name: str = "ping") -> ToolRoute:
    return ToolRoute(name=name, handler=tool)


def pay_to_claim_gateway(ledger, routes, clock=time.time, bind_payments: bool = False) -> ToolGateway:
    return ToolGateway(
        ledger,
        FixedPriceOracle(TEST_RATE),
        PayToClaimSettlement(bind_payments=bind_payments),
        routes=routes,
        settings=GatewaySettings(
            network=ledger.network,
            unit=ledger.unit,
            tx_lookup_attempts=3,
            tx_lookup_delay=0,
            bind_payments=bind_payments,
        ),
        clock=clock,
    )


def escrow_gateway(
    ledger, routes, escrow_account, with_signer: bool = True, price_tolerance: Decimal = Decimal(0)
) -> ToolGateway:
    ledger.fund(escrow_account.address, ESCROW_FEE_FLOAT)
    return ToolGateway(
        ledger,
        FixedPriceOracle(TEST_RATE),
        EscrowSettlement(
            escrow_address=escrow_account.address,
            signer=escrow_account if with_signer else None,
        ),
        routes=routes,
        settings=GatewaySettings(
            mode=MODE_ESCROW,
            network=ledger.network,
            unit=ledger.unit,
            escrow_address=escrow_account.address,
            tx_lookup_attempts=3,
            tx_lookup_delay=0,
            price_tolerance=price_tolerance,
        ),
        confirmation=FAST,
    )


def http_client(gateway: ToolGateway) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=create_app(gateway)), base_url=BASE_URL
    )


def payment_client(gateway: ToolGateway, chain, pool=None, **kwargs) -> PaymentClient:
    return PaymentClient(
        BASE_URL,
        chain,
        pool=pool,
        http_client=http_client(gateway),
        confirmation=FAST,
        **kwargs,
    )


@pytest.fixture
def tool() -> RecordingTool:
    return RecordingTool({"temp": 21})


@pytest.fixture
def failing_tool() -> RecordingTool:
    return RecordingTool(error="upstream unavailable")
