"""PaymentClient phase handling against a live in-process gateway."""

import pytest

from toolpay import PaymentClient
from toolpay.schemas import Phase, PhaseStatus

from ..conftest import PROVIDER_ADDRESS
from ..mocks import InMemoryLedger
from .conftest import (
    BASE_URL,
    FAST,
    free_route,
    http_client,
    paid_route,
    pay_to_claim_gateway,
    payment_client,
)


def _statuses(receipt) -> dict[Phase, PhaseStatus]:
    return {record.phase: record.status for record in receipt.phases}


class TestPaymentClient:
    @pytest.mark.asyncio
    async def test_free_tool_skips_payment_phases(self, ledger, pool, tool):
        gateway = pay_to_claim_gateway(ledger, [free_route(tool)])

        async with payment_client(gateway, ledger, pool=pool) as client:
            result = await client.call_tool("ping", {"n": 1})

        assert result.success
        assert result.free is True
        assert result.tx_hash is None
        assert result.data == {"temp": 21, "params": {"n": 1}}
        assert _statuses(result.receipt) == {
            Phase.INTENT: PhaseStatus.COMPLETE,
            Phase.AUTHORIZATION: PhaseStatus.SKIPPED,
            Phase.SETTLEMENT: PhaseStatus.SKIPPED,
            Phase.DELIVERY: PhaseStatus.SKIPPED,
        }
        assert result.receipt.status == "success"
        await gateway.stop()
        await pool.stop()

    @pytest.mark.asyncio
    async def test_phase_hooks_see_every_transition(self, ledger, payer_account, tool):
        ledger.fund(payer_account.address, 1_000_000)
        gateway = pay_to_claim_gateway(ledger, [paid_route(tool)])
        seen: list[tuple[str, str]] = []

        def record(tool_name, receipt):
            last = receipt.phases[-1]
            seen.append((last.phase.value, last.status.value))

        def broken(tool_name, receipt):
            raise RuntimeError("hook bug")

        async with payment_client(gateway, ledger) as client:
            client.on_phase_change(record).on_phase_change(broken)
            result = await client.run(payer_account, "weather")

        assert result.success, result.error
        assert seen == [
            ("intent", "pending"),
            ("intent", "complete"),
            ("authorization", "pending"),
            ("authorization", "complete"),
            ("settlement", "pending"),
            ("settlement", "complete"),
            ("delivery", "pending"),
            ("delivery", "complete"),
        ]
        assert result.receipt.tx_hash == result.tx_hash
        await gateway.stop()

    @pytest.mark.asyncio
    async def test_price_above_limit_is_not_paid(self, ledger, payer_account, tool):
        ledger.fund(payer_account.address, 1_000_000)
        gateway = pay_to_claim_gateway(ledger, [paid_route(tool)])

        async with payment_client(gateway, ledger, max_amount_usd="0.005") as client:
            result = await client.run(payer_account, "weather")

        assert not result.success
        assert result.receipt.failed_phase == Phase.AUTHORIZATION
        assert "exceeds limit" in result.error
        assert ledger.sent_from(payer_account.address) == []
        await gateway.stop()

    @pytest.mark.asyncio
    async def test_network_mismatch_fails_authorization(self, ledger, payer_account, tool):
        gateway = pay_to_claim_gateway(ledger, [paid_route(tool)])
        other_chain = InMemoryLedger()
        other_chain.network = "eip155:1"

        async with payment_client(gateway, other_chain) as client:
            result = await client.run(payer_account, "weather")

        assert result.receipt.failed_phase == Phase.AUTHORIZATION
        assert "eip155:1" in result.error
        assert other_chain.sent == []
        await gateway.stop()

    @pytest.mark.asyncio
    async def test_tool_failure_reports_no_cost(self, ledger, payer_account, failing_tool):
        gateway = pay_to_claim_gateway(ledger, [paid_route(failing_tool)])

        async with payment_client(gateway, ledger) as client:
            result = await client.run(payer_account, "weather")

        assert not result.success
        assert result.no_cost is True
        assert result.receipt.failed_phase == Phase.INTENT
        assert result.error == "upstream unavailable"
        await gateway.stop()

    @pytest.mark.asyncio
    async def test_unknown_tool_fails_intent(self, ledger, payer_account, tool):
        gateway = pay_to_claim_gateway(ledger, [paid_route(tool)])

        async with payment_client(gateway, ledger) as client:
            result = await client.run(payer_account, "nope")

        assert result.receipt.failed_phase == Phase.INTENT
        assert "Unknown tool" in result.error
        await gateway.stop()

    @pytest.mark.asyncio
    async def test_result_expiring_before_delivery(self, ledger, payer_account, tool):
        ledger.fund(payer_account.address, 1_000_000)
        gateway = pay_to_claim_gateway(ledger, [paid_route(tool)])

        def expire_on_settlement(tool_name, receipt):
            record = receipt.get(Phase.SETTLEMENT)
            if record is not None and record.status == PhaseStatus.COMPLETE:
                gateway.handler.cache._entries.clear()

        async with payment_client(gateway, ledger) as client:
            client.on_phase_change(expire_on_settlement)
            result = await client.run(payer_account, "weather")

        assert not result.success
        assert result.expired is True
        assert result.receipt.failed_phase == Phase.DELIVERY
        assert result.tx_hash is not None
        assert ledger.balance_of(PROVIDER_ADDRESS) == result.challenge.satoshis
        await gateway.stop()

    @pytest.mark.asyncio
    async def test_unconfirmed_payment_fails_settlement(self, ledger, payer_account, tool):
        ledger.fund(payer_account.address, 1_000_000)
        ledger.confirm_after = 10
        gateway = pay_to_claim_gateway(ledger, [paid_route(tool)])
        posts: list[str] = []

        async def count_request(request):
            posts.append(request.url.path)

        async with http_client(gateway) as http:
            http.event_hooks = {"request": [count_request], "response": []}
            async with PaymentClient(BASE_URL, ledger, http_client=http, confirmation=FAST) as client:
                result = await client.run(payer_account, "weather")

        assert not result.success
        assert result.receipt.failed_phase == Phase.SETTLEMENT
        assert "not confirmed" in result.error
        assert result.tx_hash is not None
        assert result.receipt.get(Phase.SETTLEMENT).tx_hash == result.tx_hash
        assert result.receipt.get(Phase.DELIVERY) is None
        assert posts == ["/tools/weather"]
        assert len(ledger.sent_from(payer_account.address)) == 1
        assert result.challenge.result_id in gateway.handler.cache
        await gateway.stop()

    @pytest.mark.asyncio
    async def test_rejected_broadcast_fails_settlement(self, ledger, payer_account, tool):
        ledger.fund(payer_account.address, 1_000_000)
        ledger.reject_senders.add(payer_account.address.lower())
        gateway = pay_to_claim_gateway(ledger, [paid_route(tool)])

        async with payment_client(gateway, ledger) as client:
            result = await client.run(payer_account, "weather")

        assert result.receipt.failed_phase == Phase.SETTLEMENT
        assert result.error == "broadcast rejected"
        assert result.tx_hash is None
        assert result.receipt.get(Phase.SETTLEMENT).tx_hash is None
        assert result.receipt.get(Phase.DELIVERY) is None
        assert ledger.sent == []
        await gateway.stop()

    @pytest.mark.asyncio
    async def test_call_tool_requires_pool(self, ledger):
        async with PaymentClient(BASE_URL, ledger) as client:
            with pytest.raises(RuntimeError):
                await client.call_tool("weather")
