"""Settings for the wallet pool, treasury and gateway."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional

from dotenv import load_dotenv

from .constants import (
    CONFIRMATION_MAX_ATTEMPTS,
    CONFIRMATION_RETRY_DELAY,
    DEFAULT_EXPLORER_TX_URL,
    DEFAULT_FEE_BUFFER,
    DEFAULT_FUNDING_SETTLE_DELAY,
    DEFAULT_FUNDING_WAIT,
    DEFAULT_MAINTENANCE_INTERVAL,
    DEFAULT_MIN_FOR_GAS,
    DEFAULT_MIN_FOR_TOOLS,
    DEFAULT_NETWORK,
    DEFAULT_POOL_SIZE,
    DEFAULT_PRICE_TOLERANCE,
    DEFAULT_RESERVE_FLOOR,
    DEFAULT_TOPUP_AMOUNT,
    DEFAULT_UNIT,
    MODE_ESCROW,
    MODE_PAY_TO_CLAIM,
    REPLAY_WINDOW_SECONDS,
    RESULT_SWEEP_INTERVAL,
    RESULT_TTL_SECONDS,
    TX_LOOKUP_MAX_RETRIES,
    TX_LOOKUP_RETRY_DELAY,
)

ENV_PREFIX = "TOOLPAY_"


@dataclass
class PoolSettings:
    """Worker wallet pool thresholds, in native units."""

    size: int = DEFAULT_POOL_SIZE
    min_for_tools: Decimal = DEFAULT_MIN_FOR_TOOLS
    min_for_gas: Decimal = DEFAULT_MIN_FOR_GAS
    topup_amount: Decimal = DEFAULT_TOPUP_AMOUNT
    maintenance_interval: float = DEFAULT_MAINTENANCE_INTERVAL
    funding_settle_delay: float = DEFAULT_FUNDING_SETTLE_DELAY

    def __post_init__(self) -> None:
        if self.size < 1:
            raise ValueError("pool size must be at least 1")
        if self.min_for_gas > self.min_for_tools:
            raise ValueError("min_for_gas must not exceed min_for_tools")
        if self.topup_amount <= 0:
            raise ValueError("topup_amount must be positive")


@dataclass
class TreasurySettings:
    """Treasury reserve policy, in native units."""

    reserve_floor: Decimal = DEFAULT_RESERVE_FLOOR
    fee_buffer: Decimal = DEFAULT_FEE_BUFFER
    funding_wait: float = DEFAULT_FUNDING_WAIT


@dataclass
class ConfirmationSettings:
    """Bounded confirmation polling."""

    max_attempts: int = CONFIRMATION_MAX_ATTEMPTS
    delay: float = CONFIRMATION_RETRY_DELAY


@dataclass
class GatewaySettings:
    """Gateway behaviour."""

    mode: str = MODE_PAY_TO_CLAIM
    network: str = DEFAULT_NETWORK
    unit: str = DEFAULT_UNIT
    escrow_address: Optional[str] = None
    escrow_private_key: Optional[str] = field(default=None, repr=False)
    receipt_private_key: Optional[str] = field(default=None, repr=False)
    result_ttl: int = RESULT_TTL_SECONDS
    sweep_interval: float = RESULT_SWEEP_INTERVAL
    replay_window: int = REPLAY_WINDOW_SECONDS
    price_tolerance: Decimal = DEFAULT_PRICE_TOLERANCE
    tx_lookup_attempts: int = TX_LOOKUP_MAX_RETRIES
    tx_lookup_delay: float = TX_LOOKUP_RETRY_DELAY
    bind_payments: bool = False
    tools_file: Optional[str] = None

    def __post_init__(self) -> None:
        if self.mode not in (MODE_ESCROW, MODE_PAY_TO_CLAIM):
            raise ValueError(
                f"Unsupported settlement mode: {self.mode}. "
                f"Must be one of: {MODE_ESCROW}, {MODE_PAY_TO_CLAIM}"
            )
        if self.mode == MODE_ESCROW and not self.escrow_address:
            raise ValueError("escrow_address is required in escrow mode")
        if self.sweep_interval > 60:
            raise ValueError("sweep_interval must be at most 60 seconds")
        if not Decimal(0) <= self.price_tolerance < Decimal(1):
            raise ValueError("price_tolerance must be in [0, 1)")


@dataclass
class ToolPaySettings:
    """Aggregate settings for a deployment."""

    rpc_url: Optional[str] = None
    chain_id: int = 10001
    explorer_tx_url: str = DEFAULT_EXPLORER_TX_URL
    treasury_private_key: Optional[str] = field(default=None, repr=False)
    keystore_path: str = "worker_wallets.json"
    keystore_password: Optional[str] = field(default=None, repr=False)
    pool: PoolSettings = field(default_factory=PoolSettings)
    treasury: TreasurySettings = field(default_factory=TreasurySettings)
    confirmation: ConfirmationSettings = field(default_factory=ConfirmationSettings)
    gateway: GatewaySettings = field(default_factory=GatewaySettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> "ToolPaySettings":
        """Build settings from TOOLPAY_* environment variables.

        A `.env` file is loaded first; variables already set in the
        environment win.

        Raises:
            ValueError: If a variable holds an invalid value.
        """
        load_dotenv(dotenv_path)

        pool = PoolSettings(
            size=_env_int("POOL_SIZE", DEFAULT_POOL_SIZE),
            min_for_tools=_env_decimal("MIN_FOR_TOOLS", DEFAULT_MIN_FOR_TOOLS),
            min_for_gas=_env_decimal("MIN_FOR_GAS", DEFAULT_MIN_FOR_GAS),
            topup_amount=_env_decimal("TOPUP_AMOUNT", DEFAULT_TOPUP_AMOUNT),
            maintenance_interval=_env_float("MAINTENANCE_INTERVAL", DEFAULT_MAINTENANCE_INTERVAL),
        )
        treasury = TreasurySettings(
            reserve_floor=_env_decimal("RESERVE_FLOOR", DEFAULT_RESERVE_FLOOR),
            fee_buffer=_env_decimal("FEE_BUFFER", DEFAULT_FEE_BUFFER),
            funding_wait=_env_float("FUNDING_WAIT", DEFAULT_FUNDING_WAIT),
        )
        chain_id = _env_int("CHAIN_ID", 10001)
        gateway = GatewaySettings(
            mode=_env("MODE", MODE_PAY_TO_CLAIM),
            network=_env("NETWORK", f"eip155:{chain_id}"),
            unit=_env("UNIT", DEFAULT_UNIT),
            escrow_address=_env("ESCROW_ADDRESS"),
            escrow_private_key=_env("ESCROW_PRIVATE_KEY"),
            receipt_private_key=_env("RECEIPT_PRIVATE_KEY"),
            result_ttl=_env_int("RESULT_TTL", RESULT_TTL_SECONDS),
            price_tolerance=_env_decimal("PRICE_TOLERANCE", DEFAULT_PRICE_TOLERANCE),
            bind_payments=_env_bool("BIND_PAYMENTS", False),
            tools_file=_env("TOOLS_FILE"),
        )
        return cls(
            rpc_url=_env("RPC_URL"),
            chain_id=chain_id,
            explorer_tx_url=_env("EXPLORER_TX_URL", DEFAULT_EXPLORER_TX_URL),
            treasury_private_key=_env("TREASURY_PRIVATE_KEY"),
            keystore_path=_env("KEYSTORE_PATH", "worker_wallets.json"),
            keystore_password=_env("KEYSTORE_PASSWORD"),
            pool=pool,
            treasury=treasury,
            gateway=gateway,
            log_level=_env("LOG_LEVEL", "INFO").upper(),
        )


def _env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = _env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = _env(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {value!r}")


def _env_decimal(name: str, default: Decimal) -> Decimal:
    value = _env(name)
    if value is None:
        return default
    try:
        return Decimal(value)
    except InvalidOperation:
        raise ValueError(f"{ENV_PREFIX}{name} must be a decimal, got {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")
