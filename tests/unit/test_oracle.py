"""Tests for the price oracle."""

import asyncio

import httpx
import pytest
import respx

from toolpay.constants import COINGECKO_PRICE_URL, PRICE_FALLBACK_RATE
from toolpay.oracle import FixedPriceOracle, PriceOracle, quote

from ..mocks import FakeClock


@pytest.fixture
def respx_mock():
    """Create respx mock for httpx requests."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock


def _rate_response(rate: float) -> httpx.Response:
    return httpx.Response(200, json={"bitcoin-cash": {"usd": rate}})


class TestPriceOracle:
    @pytest.mark.asyncio
    async def test_rate_is_cached_within_ttl(self, respx_mock):
        route = respx_mock.get(COINGECKO_PRICE_URL).mock(return_value=_rate_response(412.5))
        clock = FakeClock()
        oracle = PriceOracle(clock=clock)

        assert await oracle.get_rate() == 412.5
        clock.advance(299)
        assert await oracle.get_rate() == 412.5

        assert route.call_count == 1
        request = route.calls.last.request
        assert request.url.params["ids"] == "bitcoin-cash"
        assert request.url.params["vs_currencies"] == "usd"
        await oracle.aclose()

    @pytest.mark.asyncio
    async def test_rate_refreshes_after_ttl(self, respx_mock):
        route = respx_mock.get(COINGECKO_PRICE_URL).mock(
            side_effect=[_rate_response(400.0), _rate_response(420.0)]
        )
        clock = FakeClock()
        oracle = PriceOracle(clock=clock)

        assert await oracle.get_rate() == 400.0
        clock.advance(301)
        assert await oracle.get_rate() == 420.0
        assert route.call_count == 2
        await oracle.aclose()

    @pytest.mark.asyncio
    async def test_fallback_rate_retried_after_short_delay(self, respx_mock):
        route = respx_mock.get(COINGECKO_PRICE_URL).mock(
            side_effect=[httpx.Response(500), _rate_response(390.0)]
        )
        clock = FakeClock()
        oracle = PriceOracle(clock=clock)

        assert await oracle.get_rate() == PRICE_FALLBACK_RATE
        clock.advance(10)
        assert await oracle.get_rate() == PRICE_FALLBACK_RATE
        assert route.call_count == 1

        clock.advance(25)
        assert await oracle.get_rate() == 390.0
        assert route.call_count == 2
        await oracle.aclose()

    @pytest.mark.asyncio
    async def test_malformed_payload_uses_fallback(self, respx_mock):
        respx_mock.get(COINGECKO_PRICE_URL).mock(return_value=httpx.Response(200, json={}))
        oracle = PriceOracle(fallback_rate=300.0)
        assert await oracle.get_rate() == 300.0
        await oracle.aclose()

    @pytest.mark.asyncio
    async def test_network_error_uses_fallback(self, respx_mock):
        respx_mock.get(COINGECKO_PRICE_URL).mock(side_effect=httpx.ConnectTimeout("timeout"))
        oracle = PriceOracle()
        assert await oracle.get_rate() == PRICE_FALLBACK_RATE
        await oracle.aclose()

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_share_one_request(self, respx_mock):
        route = respx_mock.get(COINGECKO_PRICE_URL).mock(return_value=_rate_response(401.0))
        oracle = PriceOracle()

        rates = await asyncio.gather(*[oracle.get_rate() for _ in range(5)])

        assert rates == [401.0] * 5
        assert route.call_count == 1
        await oracle.aclose()

    @pytest.mark.asyncio
    async def test_uses_injected_client(self, respx_mock):
        respx_mock.get(COINGECKO_PRICE_URL).mock(return_value=_rate_response(405.0))
        async with httpx.AsyncClient() as client:
            oracle = PriceOracle(http_client=client)
            assert await oracle.get_rate() == 405.0
            await oracle.aclose()
            assert not client.is_closed


class TestQuote:
    @pytest.mark.asyncio
    async def test_quote_converts_with_current_rate(self):
        amount, rate = await quote(FixedPriceOracle(400.0), "$0.01", 8)
        assert amount == 2500
        assert rate == 400.0

    def test_fixed_oracle_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            FixedPriceOracle(0)
