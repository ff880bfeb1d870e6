"""Tests for the escrow release/refund queue."""

import asyncio

import pytest
from eth_account import Account

from toolpay.config import ConfirmationSettings
from toolpay.escrow import EscrowTask, EscrowTxQueue
from toolpay.schemas import EscrowRefundError, EscrowReleaseError

from ..conftest import ESCROW_KEY
from ..mocks import InMemoryLedger


def _queue(ledger: InMemoryLedger) -> EscrowTxQueue:
    signer = Account.from_key(ESCROW_KEY)
    ledger.fund(signer.address, 1_000_000)
    return EscrowTxQueue(ledger, signer, ConfirmationSettings(max_attempts=3, delay=0))


class TestEscrowTxQueue:
    @pytest.mark.asyncio
    async def test_release_and_refund_outcomes(self):
        ledger = InMemoryLedger()
        queue = _queue(ledger)
        provider, payer = Account.create().address, Account.create().address

        released = await queue.submit(EscrowTask("0xpay1", provider, 2500, "release"))
        refunded = await queue.submit(EscrowTask("0xpay2", payer, 2500, "refund"))

        assert released.status == "released"
        assert released.target == provider
        assert refunded.status == "refunded"
        assert ledger.balance_of(provider) == 2500
        assert ledger.balance_of(payer) == 2500
        await queue.stop()

    @pytest.mark.asyncio
    async def test_tasks_run_in_order_one_at_a_time(self):
        ledger = InMemoryLedger(send_delay=0.01)
        queue = _queue(ledger)
        targets = [Account.create().address for _ in range(5)]

        await asyncio.gather(
            *[queue.submit(EscrowTask(f"0xpay{i}", t, 100 + i, "release")) for i, t in enumerate(targets)]
        )

        assert [tx.outputs[0].address for tx in ledger.sent] == targets
        assert ledger.max_in_flight[queue.address.lower()] == 1
        await queue.stop()

    @pytest.mark.asyncio
    async def test_failure_does_not_block_later_tasks(self):
        ledger = InMemoryLedger()
        queue = _queue(ledger)
        target = Account.create().address

        too_big = queue.submit(EscrowTask("0xbig", target, 10**12, "release"))
        fine = queue.submit(EscrowTask("0xok", target, 1_000, "refund"))
        results = await asyncio.gather(too_big, fine, return_exceptions=True)

        assert isinstance(results[0], EscrowReleaseError)
        assert results[0].task.source_tx_hash == "0xbig"
        assert results[1].status == "refunded"
        await queue.stop()

    @pytest.mark.asyncio
    async def test_refund_failure_type(self):
        ledger = InMemoryLedger()
        queue = _queue(ledger)
        ledger.reject_senders.add(queue.address.lower())

        with pytest.raises(EscrowRefundError):
            await queue.submit(EscrowTask("0xpay", Account.create().address, 100, "refund"))
        await queue.stop()

    @pytest.mark.asyncio
    async def test_task_completes_when_caller_stops_waiting(self):
        ledger = InMemoryLedger(send_delay=0.02)
        queue = _queue(ledger)
        target = Account.create().address

        waiter = asyncio.create_task(queue.submit(EscrowTask("0xpay", target, 500, "release")))
        await asyncio.sleep(0.005)
        waiter.cancel()
        await queue.join()

        assert ledger.balance_of(target) == 500
        await queue.stop()

    @pytest.mark.asyncio
    async def test_stop_finishes_current_task_and_fails_queued(self):
        ledger = InMemoryLedger(send_delay=0.05)
        queue = _queue(ledger)
        provider, payer = Account.create().address, Account.create().address

        first = asyncio.create_task(queue.submit(EscrowTask("0xpay1", provider, 700, "release")))
        second = asyncio.create_task(queue.submit(EscrowTask("0xpay2", payer, 300, "refund")))
        await asyncio.sleep(0.01)

        await asyncio.wait_for(queue.stop(), 1.0)

        released = await asyncio.wait_for(first, 1.0)
        assert released.status == "released"
        with pytest.raises(EscrowRefundError):
            await asyncio.wait_for(second, 1.0)
        assert ledger.balance_of(provider) == 700
        assert ledger.balance_of(payer) == 0
        assert queue.pending == 0
