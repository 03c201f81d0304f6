"""
Meta-transaction relay client and the settlement state machine.

    BUILT -> SUBMITTED -> POLLING -> SUCCEEDED | REVERTED | CANCELLED | TIMED_OUT
    BUILT -> SUBMISSION_FAILED

A submission that the relay rejects never enters polling. While polling,
pending answers and transient status errors both consume one attempt of the
budget; revert and cancellation end polling immediately.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import aiohttp

from .exceptions import (
    ExecutionCancelledError,
    ExecutionInProgressError,
    ExecutionRevertedError,
    NetworkError,
    SettlementTimeoutError,
    SubmissionError,
)
from .interfaces import AsyncClock, RelayClient, SystemClock
from .metrics import ArbitrageMetrics
from .models import (
    PENDING_TASK_STATES,
    TASK_CANCELLED,
    TASK_EXEC_REVERTED,
    TASK_EXEC_SUCCESS,
    RelayStatus,
)
from .utils import get_logger, short_address

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SEC = 5.0
DEFAULT_MAX_ATTEMPTS = 12


def _optional_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class GelatoRelayClient:
    """Sponsored-call client for the Gelato relay HTTP API."""

    def __init__(
        self,
        sponsor_api_key: str,
        base_url: str = "https://api.gelato.digital",
        timeout: float = 15.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.sponsor_api_key = sponsor_api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def close(self):
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def submit(self, chain_id: int, target: str, data: bytes) -> str:
        url = f"{self.base_url}/relays/v2/sponsored-call"
        payload = {
            "chainId": str(chain_id),
            "target": target,
            "data": "0x" + data.hex(),
            "sponsorApiKey": self.sponsor_api_key,
        }
        try:
            async with self._get_session().post(url, json=payload) as response:
                body = await response.json(content_type=None)
                if response.status >= 400:
                    message = body.get("message") if isinstance(body, dict) else body
                    raise SubmissionError(
                        f"Relay rejected call (HTTP {response.status}): {message}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise SubmissionError(f"Relay unreachable: {e}") from e

        task_id = body.get("taskId") if isinstance(body, dict) else None
        if not task_id:
            raise SubmissionError("Failed to get task ID from relay")
        return task_id

    async def get_status(self, task_id: str) -> RelayStatus:
        url = f"{self.base_url}/tasks/status/{task_id}"
        try:
            async with self._get_session().get(url) as response:
                if response.status == 404:
                    return RelayStatus(task_id=task_id)
                if response.status >= 400:
                    raise NetworkError(
                        f"Relay status returned HTTP {response.status}",
                        endpoint=url,
                        status_code=response.status,
                    )
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise NetworkError(f"Relay status query failed: {e}", endpoint=url) from e

        task = body.get("task") if isinstance(body, dict) else None
        if not task:
            return RelayStatus(task_id=task_id)

        state = task.get("taskState")
        if state and state not in PENDING_TASK_STATES and state not in (
            TASK_EXEC_SUCCESS,
            TASK_EXEC_REVERTED,
            TASK_CANCELLED,
        ):
            logger.warning(f"Unrecognised relay task state {state!r}, treating as pending")

        return RelayStatus(
            task_id=task_id,
            task_state=state,
            transaction_hash=task.get("transactionHash"),
            block_number=_optional_int(task.get("blockNumber")),
            gas_used=_optional_int(task.get("gasUsed")),
        )


class RelayState(Enum):
    BUILT = "built"
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    REVERTED = "reverted"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    SUBMISSION_FAILED = "submission_failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        RelayState.SUCCEEDED,
        RelayState.REVERTED,
        RelayState.CANCELLED,
        RelayState.TIMED_OUT,
        RelayState.SUBMISSION_FAILED,
    }
)


@dataclass(frozen=True)
class RelayRequest:
    chain_id: int
    target: str
    data: bytes
    label: str = ""


@dataclass
class RelayTask:
    """Lifecycle of one submitted execution."""

    request: RelayRequest
    state: RelayState = RelayState.BUILT
    task_id: Optional[str] = None
    attempts: int = 0
    submitted_at: Optional[float] = None
    last_status: Optional[RelayStatus] = None
    transitions: List[RelayState] = field(default_factory=lambda: [RelayState.BUILT])

    def move_to(self, state: RelayState):
        if self.state.is_terminal:
            raise RuntimeError(f"Task {self.task_id} already terminal ({self.state.value})")
        self.state = state
        self.transitions.append(state)


@dataclass(frozen=True)
class SettlementReceipt:
    task_id: str
    transaction_hash: Optional[str]
    block_number: Optional[int]
    gas_used: Optional[int]
    attempts: int
    elapsed_sec: float

    @property
    def record_key(self) -> str:
        """Ledger key: the transaction hash, or the task id if the relay gave none."""
        return self.transaction_hash or self.task_id


class RelayExecutor:
    """
    Drives one relay submission to a terminal state.

    At most one task is outstanding per executor; a second ``execute`` while
    one is in flight raises ExecutionInProgressError without submitting.
    """

    def __init__(
        self,
        client: RelayClient,
        chain_id: int,
        target: str,
        clock: Optional[AsyncClock] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SEC,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        metrics: Optional[ArbitrageMetrics] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = client
        self.chain_id = chain_id
        self.target = target
        self.clock = clock or SystemClock()
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.metrics = metrics

        self._outstanding: Optional[RelayTask] = None
        self.last_task: Optional[RelayTask] = None

    @property
    def busy(self) -> bool:
        return self._outstanding is not None

    @property
    def outstanding(self) -> Optional[RelayTask]:
        return self._outstanding

    def build_request(self, data: bytes, label: str = "") -> RelayRequest:
        return RelayRequest(chain_id=self.chain_id, target=self.target, data=data, label=label)

    async def execute(self, request: RelayRequest) -> SettlementReceipt:
        """
        Submit ``request`` and poll until a terminal state.

        Raises:
            ExecutionInProgressError: If another task is still outstanding
            SubmissionError: If the relay rejected or never received the call
            ExecutionRevertedError: On ``ExecReverted``
            ExecutionCancelledError: On ``Cancelled``
            SettlementTimeoutError: If ``max_attempts`` queries saw no terminal state
        """
        if self._outstanding is not None:
            raise ExecutionInProgressError(
                f"Task {self._outstanding.task_id} is still {self._outstanding.state.value}",
                task_id=self._outstanding.task_id,
            )

        task = RelayTask(request=request)
        self._outstanding = task
        self.last_task = task
        try:
            await self._submit(task)
            return await self._poll(task)
        finally:
            self._outstanding = None

    async def _submit(self, task: RelayTask):
        request = task.request
        if request.chain_id != self.chain_id:
            task.move_to(RelayState.SUBMISSION_FAILED)
            self._record(task)
            raise SubmissionError(
                f"Invalid network. Expected chain {self.chain_id}, got {request.chain_id}"
            )

        try:
            task_id = await self.client.submit(request.chain_id, request.target, request.data)
        except SubmissionError:
            task.move_to(RelayState.SUBMISSION_FAILED)
            self._record(task)
            raise
        except Exception as e:
            task.move_to(RelayState.SUBMISSION_FAILED)
            self._record(task)
            raise SubmissionError(f"Relay submission failed: {e}") from e

        if not task_id:
            task.move_to(RelayState.SUBMISSION_FAILED)
            self._record(task)
            raise SubmissionError("Failed to get task ID from relay")

        task.task_id = task_id
        task.submitted_at = self.clock.now()
        task.move_to(RelayState.SUBMITTED)
        logger.info(
            f"Submitted {request.label or 'call'} to {short_address(request.target)}, "
            f"task {task_id}"
        )

    async def _poll(self, task: RelayTask) -> SettlementReceipt:
        task.move_to(RelayState.POLLING)

        for attempt in range(1, self.max_attempts + 1):
            task.attempts = attempt
            status = await self._query(task, attempt)

            if status is not None and status.is_terminal:
                return self._settle(task, status)

            if attempt < self.max_attempts:
                await self.clock.sleep(self.poll_interval)

        task.move_to(RelayState.TIMED_OUT)
        self._record(task)
        logger.error(f"Task {task.task_id} timed out after {self.max_attempts} attempts")
        raise SettlementTimeoutError(
            f"Transaction timed out after {self.max_attempts} attempts",
            attempts=self.max_attempts,
            task_id=task.task_id,
        )

    async def _query(self, task: RelayTask, attempt: int) -> Optional[RelayStatus]:
        if self.metrics:
            self.metrics.record_relay_poll()
        try:
            status = await self.client.get_status(task.task_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                f"Error checking relay status "
                f"(attempt {attempt}/{self.max_attempts}): {e}"
            )
            return None

        task.last_status = status
        if status is None or status.is_pending:
            logger.debug(
                f"Task {task.task_id} status: {status.task_state if status else None} "
                f"({attempt}/{self.max_attempts})"
            )
        return status

    def _settle(self, task: RelayTask, status: RelayStatus) -> SettlementReceipt:
        logger.info(f"Task {task.task_id} status: {status.task_state}")

        if status.task_state == TASK_EXEC_SUCCESS:
            task.move_to(RelayState.SUCCEEDED)
            self._record(task)
            return SettlementReceipt(
                task_id=task.task_id,
                transaction_hash=status.transaction_hash,
                block_number=status.block_number,
                gas_used=status.gas_used,
                attempts=task.attempts,
                elapsed_sec=self._elapsed(task),
            )

        if status.task_state == TASK_EXEC_REVERTED:
            task.move_to(RelayState.REVERTED)
            self._record(task)
            raise ExecutionRevertedError(
                f"Transaction reverted: {status.task_state}",
                state=status.task_state,
                task_id=task.task_id,
                transaction_hash=status.transaction_hash,
            )

        task.move_to(RelayState.CANCELLED)
        self._record(task)
        raise ExecutionCancelledError(
            f"Transaction cancelled: {status.task_state}",
            state=status.task_state,
            task_id=task.task_id,
            transaction_hash=status.transaction_hash,
        )

    def _elapsed(self, task: RelayTask) -> float:
        if task.submitted_at is None:
            return 0.0
        return max(self.clock.now() - task.submitted_at, 0.0)

    def _record(self, task: RelayTask):
        if self.metrics:
            self.metrics.record_execution(task.state.value, self._elapsed(task))

    def describe(self) -> Dict[str, Any]:
        task = self._outstanding or self.last_task
        return {
            "busy": self.busy,
            "task_id": task.task_id if task else None,
            "state": task.state.value if task else None,
            "attempts": task.attempts if task else 0,
        }
