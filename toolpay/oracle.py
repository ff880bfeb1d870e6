"""USD price oracle for the native coin."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Protocol

import httpx

from .amounts import Money, usd_to_atomic
from .constants import (
    COINGECKO_PRICE_URL,
    DEFAULT_ASSET_ID,
    PRICE_CACHE_TTL,
    PRICE_FALLBACK_RATE,
    PRICE_FALLBACK_RETRY,
    PRICE_FETCH_TIMEOUT,
)

logger = logging.getLogger(__name__)


class RateSource(Protocol):
    """Anything that can quote USD per native unit."""

    async def get_rate(self) -> float:
        ...


async def quote(source: RateSource, price_usd: Money, decimals: int) -> tuple[int, float]:
    """Convert a USD price to atomic units using `source`.

    Returns:
        Tuple of (atomic amount, rate used).
    """
    rate = await source.get_rate()
    return usd_to_atomic(price_usd, rate, decimals), rate


class FixedPriceOracle:
    """Rate source returning a constant rate."""

    def __init__(self, rate: float):
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate

    async def get_rate(self) -> float:
        return self.rate


class PriceOracle:
    """CoinGecko-backed rate source with a TTL cache.

    Concurrent refreshes share one request. When the upstream fails the
    fallback rate is served and cached for `fallback_retry` seconds only.
    """

    def __init__(
        self,
        asset_id: str = DEFAULT_ASSET_ID,
        url: str = COINGECKO_PRICE_URL,
        ttl: float = PRICE_CACHE_TTL,
        fallback_rate: float = PRICE_FALLBACK_RATE,
        fallback_retry: float = PRICE_FALLBACK_RETRY,
        timeout: float = PRICE_FETCH_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.asset_id = asset_id
        self._url = url
        self._ttl = ttl
        self._fallback_rate = fallback_rate
        self._fallback_retry = fallback_retry
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None
        self._clock = clock
        self._lock = asyncio.Lock()
        self._rate: float | None = None
        self._expires_at = 0.0

    def _cached(self) -> float | None:
        if self._rate is not None and self._clock() < self._expires_at:
            return self._rate
        return None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def get_rate(self) -> float:
        """USD per native unit."""
        cached = self._cached()
        if cached is not None:
            return cached

        async with self._lock:
            cached = self._cached()
            if cached is not None:
                return cached

            try:
                rate = await self._fetch()
                self._rate = rate
                self._expires_at = self._clock() + self._ttl
                logger.debug(f"Fetched {self.asset_id} rate: ${rate}")
            except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
                logger.warning(
                    f"Price fetch failed ({e}); using fallback rate ${self._fallback_rate}"
                )
                self._rate = self._fallback_rate
                self._expires_at = self._clock() + self._fallback_retry
            return self._rate

    async def _fetch(self) -> float:
        response = await self._get_client().get(
            self._url,
            params={"ids": self.asset_id, "vs_currencies": "usd"},
            timeout=self._timeout,
        )
        response.raise_for_status()
        rate = float(response.json()[self.asset_id]["usd"])
        if rate <= 0:
            raise ValueError(f"Invalid rate from price API: {rate}")
        return rate

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "PriceOracle":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()
