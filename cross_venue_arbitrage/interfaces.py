"""
Dependency injection interfaces for the engine's external collaborators.

Every component takes its collaborators as constructor arguments typed by the
protocols below, so the scan/decide/execute/settle cycle can be driven
entirely by in-memory fakes in tests.
"""

import asyncio
import time
from typing import List, Protocol, runtime_checkable

from dex.types import PoolReserves

from .models import AgentAccount, RelayStatus, TradeRecord


@runtime_checkable
class PoolSource(Protocol):
    """Protocol for one venue's pool listing."""

    async def fetch_pools(self) -> List[PoolReserves]:
        """Fetch the venue's current pools. May raise; the loader absorbs it."""
        ...


@runtime_checkable
class AccountReader(Protocol):
    """Protocol for reading the trading principal's configuration and balances."""

    async def read_account(self) -> AgentAccount:
        ...


@runtime_checkable
class AdvisoryOracle(Protocol):
    """Protocol for the natural-language decision oracle."""

    async def analyze(self, prompt: str) -> str:
        """Return the oracle's free-text verdict for a prompt."""
        ...


@runtime_checkable
class RelayClient(Protocol):
    """Protocol for the meta-transaction relay."""

    async def submit(self, chain_id: int, target: str, data: bytes) -> str:
        """Hand a call to the relay and return its task id."""
        ...

    async def get_status(self, task_id: str) -> RelayStatus:
        ...


@runtime_checkable
class LedgerStore(Protocol):
    """Protocol for the append-only trade record store."""

    async def append(self, record: TradeRecord) -> None:
        ...

    async def history(self) -> List[TradeRecord]:
        """All records, newest first."""
        ...


@runtime_checkable
class AsyncClock(Protocol):
    """Protocol for time in coroutine code."""

    def now(self) -> float:
        """Current Unix timestamp."""
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Production clock using system time and asyncio.sleep."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class FakeClock:
    """Deterministic clock for tests and dry runs: sleeping advances time."""

    def __init__(self, start_time: float = 1640995200.0):  # 2022-01-01
        self._current_time = start_time
        self.sleeps: List[float] = []

    def now(self) -> float:
        return self._current_time

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._current_time += seconds

    def advance_time(self, seconds: float) -> None:
        self._current_time += seconds
