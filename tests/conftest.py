"""Shared fixtures: in-memory ledger, funded treasury, worker pool."""

from decimal import Decimal

import pytest
from eth_account import Account

from toolpay.config import ConfirmationSettings, PoolSettings, TreasurySettings
from toolpay.oracle import FixedPriceOracle
from toolpay.wallets import TreasuryWallet, WalletPool, WorkerKeystore

from .mocks import FakeClock, InMemoryLedger

TREASURY_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
ESCROW_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
PAYER_KEY = "0x7c852118294e51e653712a81e05800f419141751be58f605c371e15141b007a6"
PROVIDER_ADDRESS = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"

# 1 BCH = $400, so $0.01 = 2500 satoshis
TEST_RATE = 400.0
TREASURY_START = 100_000_000


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def treasury_account():
    return Account.from_key(TREASURY_KEY)


@pytest.fixture
def escrow_account():
    return Account.from_key(ESCROW_KEY)


@pytest.fixture
def payer_account():
    return Account.from_key(PAYER_KEY)


@pytest.fixture
def oracle() -> FixedPriceOracle:
    return FixedPriceOracle(TEST_RATE)


@pytest.fixture
def fast_confirmation() -> ConfirmationSettings:
    return ConfirmationSettings(max_attempts=3, delay=0)


@pytest.fixture
def treasury(ledger, treasury_account, fast_confirmation) -> TreasuryWallet:
    ledger.fund(treasury_account.address, TREASURY_START)
    return TreasuryWallet(
        ledger,
        treasury_account,
        TreasurySettings(
            reserve_floor=Decimal("0.001"),
            fee_buffer=Decimal("0.00002"),
            funding_wait=1.0,
        ),
        fast_confirmation,
    )


@pytest.fixture
def keystore(tmp_path) -> WorkerKeystore:
    return WorkerKeystore(tmp_path / "workers.json")


@pytest.fixture
def pool(ledger, treasury, keystore) -> WalletPool:
    pool = WalletPool(
        ledger,
        treasury,
        keystore,
        PoolSettings(size=4, funding_settle_delay=0),
    )
    pool.init()
    return pool
