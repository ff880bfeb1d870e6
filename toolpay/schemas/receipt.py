"""Client-side phase log for one paid tool call."""

from __future__ import annotations

import time
from enum import Enum
from typing import Optional

from pydantic import Field

from .base import ToolPayModel


class Phase(str, Enum):
    INTENT = "intent"
    AUTHORIZATION = "authorization"
    SETTLEMENT = "settlement"
    DELIVERY = "delivery"


PHASE_ORDER: tuple[Phase, ...] = (
    Phase.INTENT,
    Phase.AUTHORIZATION,
    Phase.SETTLEMENT,
    Phase.DELIVERY,
)


class PhaseStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"
    SKIPPED = "skipped"


_DONE = (PhaseStatus.COMPLETE, PhaseStatus.SKIPPED)


class InvalidPhaseTransition(ValueError):
    """Raised when a receipt update would break phase ordering."""


class PhaseRecord(ToolPayModel):
    phase: Phase
    status: PhaseStatus = PhaseStatus.PENDING
    started_at: float = Field(default_factory=time.time)
    finished_at: Optional[float] = None
    tx_hash: Optional[str] = None
    detail: Optional[str] = None


class Receipt(ToolPayModel):
    """Ordered INTENT -> AUTHORIZATION -> SETTLEMENT -> DELIVERY log.

    Phase status only moves forward (pending -> complete | failed, or
    straight to skipped), and a phase can only begin once every earlier
    phase is complete or skipped.
    """

    tool_name: str
    phases: list[PhaseRecord] = Field(default_factory=list)

    def get(self, phase: Phase) -> PhaseRecord | None:
        for record in self.phases:
            if record.phase == phase:
                return record
        return None

    def _check_can_begin(self, phase: Phase) -> None:
        if self.get(phase) is not None:
            raise InvalidPhaseTransition(f"Phase {phase.value} already recorded")
        for earlier in PHASE_ORDER[: PHASE_ORDER.index(phase)]:
            record = self.get(earlier)
            if record is None or record.status not in _DONE:
                raise InvalidPhaseTransition(
                    f"Cannot begin {phase.value} before {earlier.value} is complete"
                )

    def _pending(self, phase: Phase) -> PhaseRecord:
        record = self.get(phase)
        if record is None or record.status != PhaseStatus.PENDING:
            raise InvalidPhaseTransition(f"Phase {phase.value} is not pending")
        return record

    def start(self, phase: Phase) -> PhaseRecord:
        self._check_can_begin(phase)
        record = PhaseRecord(phase=phase)
        self.phases.append(record)
        return record

    def complete(
        self,
        phase: Phase,
        detail: str | None = None,
        tx_hash: str | None = None,
    ) -> PhaseRecord:
        record = self._pending(phase)
        record.status = PhaseStatus.COMPLETE
        record.finished_at = time.time()
        record.detail = detail
        if tx_hash:
            record.tx_hash = tx_hash
        return record

    def fail(self, phase: Phase, detail: str, tx_hash: str | None = None) -> PhaseRecord:
        record = self._pending(phase)
        record.status = PhaseStatus.FAILED
        record.finished_at = time.time()
        record.detail = detail
        if tx_hash:
            record.tx_hash = tx_hash
        return record

    def skip(self, phase: Phase, detail: str | None = None) -> PhaseRecord:
        self._check_can_begin(phase)
        now = time.time()
        record = PhaseRecord(
            phase=phase,
            status=PhaseStatus.SKIPPED,
            started_at=now,
            finished_at=now,
            detail=detail,
        )
        self.phases.append(record)
        return record

    @property
    def failed_phase(self) -> Phase | None:
        for record in self.phases:
            if record.status == PhaseStatus.FAILED:
                return record.phase
        return None

    @property
    def status(self) -> str:
        """One of "in_progress", "success" or "failed"."""
        if self.failed_phase is not None:
            return "failed"
        if len(self.phases) == len(PHASE_ORDER) and all(
            r.status in _DONE for r in self.phases
        ):
            return "success"
        return "in_progress"

    @property
    def tx_hash(self) -> str | None:
        record = self.get(Phase.SETTLEMENT)
        return record.tx_hash if record else None
