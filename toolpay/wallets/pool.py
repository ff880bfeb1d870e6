"""Worker wallet pool.

A fixed set of worker wallets lets several paid calls run at once without
two transactions from the same account racing each other's sequence
number. Each call leases one wallet exclusively:

    ```python
    pool = WalletPool(chain, treasury, WorkerKeystore("workers.json"))
    pool.init()
    async with pool.lease() as wallet:
        ...  # pay from wallet.account
    ```

Wallets below the tool threshold are topped up from the treasury as part
of `acquire()`, and a background sweep tops up idle wallets that drifted
below the gas floor.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from eth_account.signers.local import LocalAccount

from ..amounts import to_atomic
from ..chain import ChainClient
from ..config import PoolSettings
from ..schemas import (
    FundingFailedError,
    FundingIncompleteError,
    PoolSnapshot,
    WalletPoolBusyError,
    WorkerWalletState,
)
from .keystore import WorkerKeystore
from .treasury import TreasuryWallet

logger = logging.getLogger(__name__)

PoolObserver = Callable[[PoolSnapshot], None]


@dataclass
class WorkerWallet:
    """A pool member. Key material never leaves the pool's lease holder."""

    id: int
    account: LocalAccount = field(repr=False)
    is_busy: bool = False
    last_used_at: float = 0.0
    cached_balance: int | None = None

    @property
    def address(self) -> str:
        return self.account.address

    def state(self) -> WorkerWalletState:
        return WorkerWalletState(
            id=self.id,
            address=self.address,
            is_busy=self.is_busy,
            last_used_at=self.last_used_at,
            cached_balance=self.cached_balance,
        )


class WalletPool:
    """Bounded pool of worker wallets with funding on demand."""

    def __init__(
        self,
        chain: ChainClient,
        treasury: TreasuryWallet,
        keystore: WorkerKeystore,
        settings: PoolSettings | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._chain = chain
        self._treasury = treasury
        self._keystore = keystore
        self.settings = settings or PoolSettings()
        self._clock = clock

        self._min_for_tools = to_atomic(self.settings.min_for_tools, chain.decimals)
        self._min_for_gas = to_atomic(self.settings.min_for_gas, chain.decimals)
        self._topup_amount = to_atomic(self.settings.topup_amount, chain.decimals)

        self._wallets: list[WorkerWallet] = []
        self._observers: list[PoolObserver] = []
        self._maintenance_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

    # ========================================================================
    # Setup / Observation
    # ========================================================================

    def init(self) -> None:
        """Load or generate the worker wallets. No network calls."""
        if self._wallets:
            return
        accounts = self._keystore.load_or_create(self.settings.size)
        self._wallets = [WorkerWallet(id=i, account=a) for i, a in enumerate(accounts)]
        logger.info(f"Wallet pool initialized with {len(self._wallets)} workers")
        self._notify()

    @property
    def size(self) -> int:
        return len(self._wallets)

    def snapshot(self) -> PoolSnapshot:
        return PoolSnapshot(
            wallets=[w.state() for w in self._wallets],
            treasury_address=self._treasury.address,
            treasury_funding=self._treasury.is_funding,
        )

    def subscribe(self, observer: PoolObserver) -> Callable[[], None]:
        """Register an observer; it receives the current snapshot immediately.

        Returns:
            Callable that removes the observer.
        """
        self._observers.append(observer)
        self._call_observer(observer, self.snapshot())

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self) -> None:
        if not self._observers:
            return
        snapshot = self.snapshot()
        for observer in list(self._observers):
            self._call_observer(observer, snapshot)

    def _call_observer(self, observer: PoolObserver, snapshot: PoolSnapshot) -> None:
        try:
            observer(snapshot)
        except Exception as e:
            logger.warning(f"Pool observer failed: {e}")

    # ========================================================================
    # Acquire / Release
    # ========================================================================

    def _reserve(self) -> WorkerWallet:
        # No await between selection and marking.
        if not self._wallets:
            raise RuntimeError("Wallet pool is not initialized; call init() first")
        idle = [w for w in self._wallets if not w.is_busy]
        if not idle:
            raise WalletPoolBusyError(f"All {len(self._wallets)} worker wallets are busy")
        wallet = min(idle, key=lambda w: w.last_used_at)
        wallet.is_busy = True
        wallet.last_used_at = self._clock()
        return wallet

    def _unmark(self, wallet: WorkerWallet) -> None:
        wallet.is_busy = False
        self._notify()

    async def acquire(self) -> WorkerWallet:
        """Lease the least recently used idle wallet, funding it if needed.

        Raises:
            WalletPoolBusyError: If every wallet is leased.
            FundingFailedError: If the wallet could not be funded; the wallet
                is returned to the pool.
        """
        wallet = self._reserve()
        logger.info(f"Worker {wallet.id} ({wallet.address}) locked")
        self._notify()

        try:
            await self.ensure_funds(wallet)
        except FundingFailedError:
            self._unmark(wallet)
            raise
        except Exception as e:
            self._unmark(wallet)
            raise FundingFailedError(
                f"Funding worker {wallet.id} failed: {e}", address=wallet.address
            ) from e
        except BaseException:
            self._unmark(wallet)
            raise
        return wallet

    def release(self, address: str) -> None:
        """Return a leased wallet and refresh its balance in the background."""
        wallet = self._find(address)
        if wallet is None:
            logger.warning(f"Release of unknown wallet {address} ignored")
            return
        self._unmark(wallet)
        logger.info(f"Worker {wallet.id} ({wallet.address}) released")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._refresh_quietly(wallet))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[WorkerWallet]:
        """Acquire a wallet for the duration of the block."""
        wallet = await self.acquire()
        try:
            yield wallet
        finally:
            self.release(wallet.address)

    def _find(self, address: str) -> WorkerWallet | None:
        target = address.lower()
        for wallet in self._wallets:
            if wallet.address.lower() == target:
                return wallet
        return None

    # ========================================================================
    # Funding
    # ========================================================================

    async def refresh_balance(self, wallet: WorkerWallet) -> int:
        balance = await self._chain.get_balance(wallet.address)
        wallet.cached_balance = balance
        return balance

    async def _refresh_quietly(self, wallet: WorkerWallet) -> None:
        try:
            await self.refresh_balance(wallet)
            self._notify()
        except Exception as e:
            logger.warning(f"Balance refresh for worker {wallet.id} failed: {e}")

    async def ensure_funds(self, wallet: WorkerWallet) -> None:
        """Top up `wallet` from the treasury if it is below the tool threshold.

        Raises:
            FundingFailedError: Treasury errors (timeout, low reserve).
            FundingIncompleteError: If the wallet stays below the gas floor.
        """
        balance = await self.refresh_balance(wallet)
        if balance >= self._min_for_tools:
            return

        logger.info(
            f"Worker {wallet.id} below tool threshold ({balance} < {self._min_for_tools}); funding"
        )
        await self._treasury.fund(wallet.address, self._topup_amount)

        balance = await self.refresh_balance(wallet)
        if balance < self._min_for_tools:
            await asyncio.sleep(self.settings.funding_settle_delay)
            balance = await self.refresh_balance(wallet)
        self._notify()

        if balance < self._min_for_gas:
            raise FundingIncompleteError(
                f"Worker {wallet.id} still below gas floor after funding ({balance})",
                address=wallet.address,
                balance=balance,
            )

    # ========================================================================
    # Maintenance
    # ========================================================================

    async def sweep(self) -> None:
        """One maintenance pass: refresh idle balances, top up low ones.

        Errors are logged, never raised.
        """
        for wallet in self._wallets:
            if wallet.is_busy:
                continue
            try:
                balance = await self.refresh_balance(wallet)
            except Exception as e:
                logger.warning(f"Sweep: balance check for worker {wallet.id} failed: {e}")
                continue

            if balance >= self._min_for_gas:
                continue
            if self._treasury.is_funding:
                logger.debug("Sweep: treasury busy, deferring top-ups")
                break
            if wallet.is_busy:
                continue

            wallet.is_busy = True
            self._notify()
            try:
                await self._treasury.fund(wallet.address, self._topup_amount)
                await self.refresh_balance(wallet)
            except Exception as e:
                logger.warning(f"Sweep: funding worker {wallet.id} failed: {e}")
            finally:
                self._unmark(wallet)

    async def _maintenance_loop(self) -> None:
        while True:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Wallet pool maintenance failed: {e}")
            await asyncio.sleep(self.settings.maintenance_interval)

    async def start(self) -> None:
        """Start the background maintenance sweep."""
        self.init()
        if self._maintenance_task is None:
            self._maintenance_task = asyncio.create_task(self._maintenance_loop())

    async def stop(self) -> None:
        """Stop background work."""
        tasks = list(self._background)
        if self._maintenance_task is not None:
            tasks.append(self._maintenance_task)
            self._maintenance_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
