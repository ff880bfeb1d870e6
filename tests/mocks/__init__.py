"""Mock implementations for testing."""

from .ledger import InMemoryLedger
from .tools import FakeClock, RecordingTool

__all__ = [
    "InMemoryLedger",
    "FakeClock",
    "RecordingTool",
]
