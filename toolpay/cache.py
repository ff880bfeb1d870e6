"""Pending results awaiting payment (pay-to-claim mode)."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from .constants import RESULT_SWEEP_INTERVAL, RESULT_TTL_SECONDS
from .schemas import ResultExpiredError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PendingResult:
    """A tool result held until its price is paid."""

    result_id: str
    tool_name: str
    payload: Any
    price_required: int
    pay_to: str
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class ResultCache:
    """TTL map of resultId -> PendingResult with at-most-once claims.

    A claim runs its verification under a per-resultId lock; the entry is
    deleted only if verification succeeds, so a failed verification leaves
    the result claimable until it expires.
    """

    def __init__(
        self,
        ttl: float = RESULT_TTL_SECONDS,
        sweep_interval: float = RESULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, PendingResult] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._sweep_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, result_id: str) -> bool:
        return self.get(result_id) is not None

    def put(self, tool_name: str, payload: Any, price_required: int, pay_to: str) -> PendingResult:
        """Store a result and return its pending entry."""
        now = self._clock()
        entry = PendingResult(
            result_id=str(uuid.uuid4()),
            tool_name=tool_name,
            payload=payload,
            price_required=price_required,
            pay_to=pay_to,
            created_at=now,
            expires_at=now + self.ttl,
        )
        self._entries[entry.result_id] = entry
        logger.info(f"Cached result {entry.result_id} for {tool_name} (price {price_required})")
        return entry

    def get(self, result_id: str) -> PendingResult | None:
        """Live entry for `result_id`, dropping it if expired."""
        entry = self._entries.get(result_id)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._drop(result_id)
            return None
        return entry

    async def claim(
        self,
        result_id: str,
        verify: Callable[[PendingResult], Awaitable[T]],
    ) -> tuple[PendingResult, T]:
        """Verify payment for `result_id` and take the result.

        Args:
            result_id: Id issued with the 402 challenge.
            verify: Coroutine function checking payment against the entry;
                raises to reject.

        Returns:
            Tuple of (entry, value returned by verify).

        Raises:
            ResultExpiredError: If the id is unknown, expired or already claimed.
            Exception: Whatever `verify` raised; the entry stays claimable.
        """
        lock = self._locks.setdefault(result_id, asyncio.Lock())
        async with lock:
            entry = self.get(result_id)
            if entry is None:
                self._locks.pop(result_id, None)
                raise ResultExpiredError(
                    f"Result {result_id} is unknown or expired", result_id=result_id
                )

            verified = await verify(entry)

            self._entries.pop(result_id, None)
            self._locks.pop(result_id, None)
            logger.info(f"Result {result_id} claimed")
            return entry, verified

    def _drop(self, result_id: str) -> None:
        self._entries.pop(result_id, None)
        lock = self._locks.get(result_id)
        if lock is not None and not lock.locked():
            self._locks.pop(result_id, None)

    def sweep(self) -> int:
        """Remove expired entries. Returns how many were removed."""
        now = self._clock()
        expired = [rid for rid, e in self._entries.items() if e.is_expired(now)]
        for result_id in expired:
            self._drop(result_id)
        if expired:
            logger.info(f"Swept {len(expired)} expired results")
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Result cache sweep failed: {e}")

    async def start(self) -> None:
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
