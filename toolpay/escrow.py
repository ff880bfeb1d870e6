"""Serialized release/refund sender for escrowed payments."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Literal

from eth_account.signers.local import LocalAccount

from .chain import ChainClient, wait_for_confirmation
from .config import ConfirmationSettings
from .schemas import EscrowOutcome, EscrowRefundError, EscrowReleaseError

logger = logging.getLogger(__name__)

EscrowKind = Literal["release", "refund"]


@dataclass
class EscrowTask:
    """Move `amount` held in escrow for `source_tx_hash` to `target`."""

    source_tx_hash: str
    target: str
    amount: int
    kind: EscrowKind


class EscrowTxQueue:
    """FIFO queue drained by a single worker sharing one signer.

    A task starts only after the previous task's transaction was broadcast
    and confirmed (or failed), so the escrow account never has two sends in
    flight. A failed task does not block the ones behind it.
    """

    def __init__(
        self,
        chain: ChainClient,
        signer: LocalAccount,
        confirmation: ConfirmationSettings | None = None,
    ):
        self._chain = chain
        self._signer = signer
        self._confirmation = confirmation or ConfirmationSettings()
        self._queue: asyncio.Queue[tuple[EscrowTask, asyncio.Future]] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._current: asyncio.Future | None = None

    @property
    def address(self) -> str:
        return self._signer.address

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def submit(self, task: EscrowTask) -> EscrowOutcome:
        """Enqueue `task` and wait for its outcome.

        The task runs even if the caller stops waiting.

        Raises:
            EscrowReleaseError: If a release failed.
            EscrowRefundError: If a refund failed.
        """
        await self.start()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._queue.put((task, future))
        logger.info(
            f"Queued escrow {task.kind} of {task.amount} to {task.target} "
            f"for {task.source_tx_hash} ({self._queue.qsize()} pending)"
        )
        return await asyncio.shield(future)

    async def _run(self) -> None:
        while True:
            task, future = await self._queue.get()
            self._current = future
            try:
                outcome = await self._execute(task)
            except asyncio.CancelledError:
                self._fail(task, future, "queue stopped")
                raise
            except Exception as e:
                logger.error(f"Escrow {task.kind} for {task.source_tx_hash} failed: {e}")
                self._fail(task, future, e)
            else:
                if not future.done():
                    future.set_result(outcome)
            finally:
                self._current = None
                self._queue.task_done()

    @staticmethod
    def _fail(task: EscrowTask, future: asyncio.Future, reason: object) -> None:
        if future.done():
            return
        error_cls = EscrowReleaseError if task.kind == "release" else EscrowRefundError
        future.set_exception(error_cls(f"Escrow {task.kind} failed: {reason}", task=task))

    async def _execute(self, task: EscrowTask) -> EscrowOutcome:
        tx_hash = await self._chain.send_transaction(self._signer, task.target, task.amount)
        await wait_for_confirmation(
            self._chain,
            tx_hash,
            max_attempts=self._confirmation.max_attempts,
            delay=self._confirmation.delay,
        )
        logger.info(f"Escrow {task.kind} of {task.amount} to {task.target} confirmed: {tx_hash}")
        return EscrowOutcome(
            status="released" if task.kind == "release" else "refunded",
            tx_hash=tx_hash,
            target=task.target,
            amount=task.amount,
        )

    async def join(self) -> None:
        """Wait until every queued task has been processed."""
        await self._queue.join()

    async def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the worker.

        The task in flight runs to completion; tasks still queued fail with
        EscrowReleaseError or EscrowRefundError so no submitter is left waiting.
        """
        while not self._queue.empty():
            task, future = self._queue.get_nowait()
            logger.warning(f"Dropping escrow {task.kind} for {task.source_tx_hash}: queue stopped")
            self._fail(task, future, "queue stopped")
            self._queue.task_done()

        if self._current is not None and self._worker is not None:
            await asyncio.wait({self._current, self._worker}, return_when=asyncio.FIRST_COMPLETED)

        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
