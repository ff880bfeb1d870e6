"""Tests for the pending-result cache."""

import asyncio

import pytest

from toolpay.cache import ResultCache
from toolpay.schemas import PaymentVerificationError, ResultExpiredError

from ..conftest import PROVIDER_ADDRESS
from ..mocks import FakeClock


async def _accept(entry):
    return "paid"


class TestResultCache:
    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.cache = ResultCache(ttl=300, sweep_interval=60, clock=self.clock)

    def _put(self):
        return self.cache.put("weather", {"temp": 20}, 2500, PROVIDER_ADDRESS)

    @pytest.mark.asyncio
    async def test_claim_returns_payload_and_deletes(self):
        entry = self._put()

        claimed, verified = await self.cache.claim(entry.result_id, _accept)

        assert claimed.payload == {"temp": 20}
        assert verified == "paid"
        assert entry.result_id not in self.cache

    @pytest.mark.asyncio
    async def test_second_claim_is_expired(self):
        entry = self._put()
        await self.cache.claim(entry.result_id, _accept)

        with pytest.raises(ResultExpiredError):
            await self.cache.claim(entry.result_id, _accept)

    @pytest.mark.asyncio
    async def test_failed_verification_keeps_entry(self):
        entry = self._put()

        async def reject(e):
            raise PaymentVerificationError("short", reason="insufficient_amount")

        with pytest.raises(PaymentVerificationError):
            await self.cache.claim(entry.result_id, reject)

        assert entry.result_id in self.cache
        claimed, _ = await self.cache.claim(entry.result_id, _accept)
        assert claimed.result_id == entry.result_id

    @pytest.mark.asyncio
    async def test_claim_after_ttl_is_expired(self):
        entry = self._put()
        self.clock.advance(301)

        with pytest.raises(ResultExpiredError):
            await self.cache.claim(entry.result_id, _accept)

    @pytest.mark.asyncio
    async def test_claim_just_before_ttl_succeeds(self):
        entry = self._put()
        self.clock.advance(299)
        claimed, _ = await self.cache.claim(entry.result_id, _accept)
        assert claimed.result_id == entry.result_id

    @pytest.mark.asyncio
    async def test_unknown_id_is_expired(self):
        with pytest.raises(ResultExpiredError):
            await self.cache.claim("no-such-id", _accept)

    @pytest.mark.asyncio
    async def test_concurrent_claims_deliver_once(self):
        entry = self._put()
        verifications = 0

        async def slow_accept(e):
            nonlocal verifications
            verifications += 1
            await asyncio.sleep(0.01)
            return "paid"

        results = await asyncio.gather(
            *[self.cache.claim(entry.result_id, slow_accept) for _ in range(5)],
            return_exceptions=True,
        )

        delivered = [r for r in results if not isinstance(r, Exception)]
        expired = [r for r in results if isinstance(r, ResultExpiredError)]
        assert len(delivered) == 1
        assert len(expired) == 4
        assert verifications == 1

    def test_sweep_removes_only_expired(self):
        old = self._put()
        self.clock.advance(200)
        fresh = self._put()
        self.clock.advance(101)

        assert self.cache.sweep() == 1
        assert old.result_id not in self.cache
        assert fresh.result_id in self.cache
        assert len(self.cache) == 1

    def test_entries_get_unique_ids_and_expiry(self):
        a, b = self._put(), self._put()
        assert a.result_id != b.result_id
        assert a.expires_at == a.created_at + 300

    @pytest.mark.asyncio
    async def test_background_sweeper(self):
        cache = ResultCache(ttl=300, sweep_interval=0.01, clock=self.clock)
        cache.put("weather", {}, 1, PROVIDER_ADDRESS)
        self.clock.advance(301)

        await cache.start()
        await asyncio.sleep(0.05)
        await cache.stop()

        assert len(cache._entries) == 0
