"""Observer-facing wallet pool snapshots. Never carry key material."""

from __future__ import annotations

from typing import Optional

from .base import ToolPayModel


class WorkerWalletState(ToolPayModel):
    id: int
    address: str
    is_busy: bool
    last_used_at: float
    cached_balance: Optional[int] = None


class PoolSnapshot(ToolPayModel):
    wallets: list[WorkerWalletState]
    treasury_address: Optional[str] = None
    treasury_funding: bool = False

    @property
    def busy_count(self) -> int:
        return sum(1 for w in self.wallets if w.is_busy)

    @property
    def idle_count(self) -> int:
        return len(self.wallets) - self.busy_count
