"""
Arbitrage engine: the scan -> decide -> size -> execute -> settle -> record cycle.

One cycle runs strictly in sequence after the two venue loads (which run
concurrently). Cycles never overlap, so at most one relay task is ever
outstanding. Every cycle ends in a CycleReport; nothing a single cycle does
stops the outer loop.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, List, Optional, Sequence

from dex.pool_loader import VenuePoolLoader, load_both
from dex.scanner import OpportunityScanner
from dex.types import ArbitrageOpportunity, PoolReserves, QuoteAsset

from .decision_gate import Decision, DecisionGate
from .encoding import encode_arbitrage_call, encode_trade_action
from .exceptions import (
    CrossVenueArbitrageError,
    ExecutionCancelledError,
    ExecutionInProgressError,
    ExecutionRevertedError,
    LedgerWriteError,
    SettlementError,
    SettlementTimeoutError,
    SubmissionError,
    ValidationError,
)
from .interfaces import AccountReader, AsyncClock, SystemClock
from .ledger import TradeLedger
from .metrics import ArbitrageMetrics
from .models import AgentAccount, TradeAction, TradeRecord
from .relay import RelayExecutor, SettlementReceipt
from .sizing import ExecutionSizer, Sizing
from .utils import format_duration, get_logger

logger = get_logger(__name__)


class CycleOutcome(Enum):
    NO_OPPORTUNITY = "no_opportunity"
    SKIPPED = "skipped"
    EXECUTED = "executed"
    EXECUTED_UNRECORDED = "executed_unrecorded"
    SUBMISSION_FAILED = "submission_failed"
    REVERTED = "reverted"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass
class CycleReport:
    outcome: CycleOutcome
    opportunity: Optional[ArbitrageOpportunity] = None
    decision: Optional[Decision] = None
    sizing: Optional[Sizing] = None
    receipt: Optional[SettlementReceipt] = None
    record: Optional[TradeRecord] = None
    error: Optional[BaseException] = None
    reason: str = ""
    started_at: float = 0.0
    duration_sec: float = 0.0

    @property
    def executed(self) -> bool:
        return self.outcome in (CycleOutcome.EXECUTED, CycleOutcome.EXECUTED_UNRECORDED)


class ArbitrageEngine:
    """
    Wires the pipeline components together and runs the cycle loop.

    All collaborators are injected; see ``bootstrap.create_engine`` for the
    production wiring.
    """

    def __init__(
        self,
        primary: VenuePoolLoader,
        secondary: VenuePoolLoader,
        scanner: OpportunityScanner,
        account_reader: AccountReader,
        gate: DecisionGate,
        sizer: ExecutionSizer,
        relay: RelayExecutor,
        ledger: TradeLedger,
        quote: QuoteAsset,
        clock: Optional[AsyncClock] = None,
        cycle_interval: float = 60.0,
        metrics: Optional[ArbitrageMetrics] = None,
        history_size: int = 100,
    ):
        self.primary = primary
        self.secondary = secondary
        self.scanner = scanner
        self.account_reader = account_reader
        self.gate = gate
        self.sizer = sizer
        self.relay = relay
        self.ledger = ledger
        self.quote = quote
        self.clock = clock or SystemClock()
        self.cycle_interval = cycle_interval
        self.metrics = metrics

        self.reports: Deque[CycleReport] = deque(maxlen=history_size)
        self.cycles_run = 0
        self._running = False
        self._cycle_lock = asyncio.Lock()

    # === CYCLE ===

    async def run_cycle(self) -> CycleReport:
        """Run one full cycle; never raises for cycle-level failures."""
        async with self._cycle_lock:
            started = self.clock.now()
            try:
                report = await self._cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Cycle failed unexpectedly: {e}")
                report = CycleReport(CycleOutcome.FAILED, error=e, reason=str(e))

            report.started_at = started
            report.duration_sec = max(self.clock.now() - started, 0.0)
            self._finish(report)
            return report

    async def _cycle(self) -> CycleReport:
        if self.relay.busy:
            return CycleReport(CycleOutcome.SKIPPED, reason="Relay task still outstanding")

        primary_pools, secondary_pools = await load_both(self.primary, self.secondary)
        if self.metrics:
            self.metrics.record_pools_loaded(self.primary.name, len(primary_pools))
            self.metrics.record_pools_loaded(self.secondary.name, len(secondary_pools))

        scan = self.scanner.scan(primary_pools, secondary_pools)
        if self.metrics:
            self.metrics.record_opportunities(len(scan.opportunities))
        if not scan.opportunities:
            return CycleReport(
                CycleOutcome.NO_OPPORTUNITY,
                reason=f"No opportunities ({len(scan.skipped)} pools skipped)",
            )

        account = await self._read_account()
        if account is None:
            return CycleReport(
                CycleOutcome.SKIPPED, scan.best, reason="Agent account unavailable"
            )

        decision = await self.gate.decide(scan.opportunities, account)
        if self.metrics:
            self.metrics.record_decision(
                "error" if decision.oracle_failed
                else "execute" if decision.should_execute
                else "skip"
            )
        if not decision.should_execute:
            return CycleReport(
                CycleOutcome.SKIPPED, scan.best, decision, reason=decision.rationale
            )

        opportunity = decision.opportunity
        sizing = self.sizer.size(account)
        if sizing.is_noop:
            return CycleReport(
                CycleOutcome.SKIPPED,
                opportunity,
                decision,
                sizing,
                reason="Sized amount is zero",
            )

        data = encode_arbitrage_call(
            opportunity.token_address,
            sizing.amount,
            opportunity.buy_from_primary,
            sizing.min_profit_floor,
        )
        action = TradeAction(
            type="arbitrage",
            token_a=self.quote.address,
            token_b=opportunity.token_address,
            amount_a=sizing.amount,
            amount_b=sizing.min_profit_floor,
            reason=decision.rationale,
        )
        report = CycleReport(CycleOutcome.FAILED, opportunity, decision, sizing)
        label = f"arbitrage {opportunity.token_symbol or opportunity.token_address}"
        return await self._execute_and_record(
            report, action, data, label, account, [*primary_pools, *secondary_pools]
        )

    async def execute_action(self, action: TradeAction) -> CycleReport:
        """
        Run a pre-decided swap or liquidity action through the relay and ledger.
        """
        async with self._cycle_lock:
            started = self.clock.now()
            try:
                report = await self._action(action)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Action failed unexpectedly: {e}")
                report = CycleReport(CycleOutcome.FAILED, error=e, reason=str(e))
            report.started_at = started
            report.duration_sec = max(self.clock.now() - started, 0.0)
            self._finish(report)
            return report

    async def _action(self, action: TradeAction) -> CycleReport:
        account = await self._read_account()
        if account is None:
            return CycleReport(CycleOutcome.SKIPPED, reason="Agent account unavailable")

        prepared, slippage_bps = self.sizer.prepare_action(action, account)
        try:
            data = encode_trade_action(prepared, self.quote.address, slippage_bps)
        except ValidationError as e:
            return CycleReport(CycleOutcome.SKIPPED, error=e, reason=str(e))

        primary_pools, secondary_pools = await load_both(self.primary, self.secondary)
        report = CycleReport(CycleOutcome.FAILED)
        return await self._execute_and_record(
            report, prepared, data, prepared.type, account, [*primary_pools, *secondary_pools]
        )

    # === EXECUTION / SETTLEMENT ===

    async def _execute_and_record(
        self,
        report: CycleReport,
        action: TradeAction,
        data: bytes,
        label: str,
        before: AgentAccount,
        pools: Sequence[PoolReserves],
    ) -> CycleReport:
        request = self.relay.build_request(data, label)
        try:
            receipt = await self.relay.execute(request)
        except SubmissionError as e:
            logger.error(f"Submission failed for {label}: {e}")
            return self._failed(report, CycleOutcome.SUBMISSION_FAILED, e)
        except ExecutionInProgressError as e:
            logger.error(f"Refusing to submit {label}: {e}")
            return self._failed(report, CycleOutcome.FAILED, e)
        except SettlementTimeoutError as e:
            logger.error(f"Settlement timed out for {label}: {e}")
            return self._failed(report, CycleOutcome.TIMED_OUT, e)
        except ExecutionRevertedError as e:
            logger.error(f"Execution reverted for {label}: {e}")
            await self._record_failure(report, action, e, before)
            return self._failed(report, CycleOutcome.REVERTED, e)
        except ExecutionCancelledError as e:
            logger.error(f"Execution cancelled for {label}: {e}")
            await self._record_failure(report, action, e, before)
            return self._failed(report, CycleOutcome.CANCELLED, e)

        report.receipt = receipt
        after = await self._read_account()
        if after is None:
            error = LedgerWriteError(
                "Post-trade balances unavailable", tx_hash=receipt.record_key
            )
            return self._unrecorded(report, error)

        try:
            report.record = await self.ledger.record_success(
                action, receipt, before, after, pools
            )
        except LedgerWriteError as e:
            return self._unrecorded(report, e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = LedgerWriteError(
                f"Failed to record trade {receipt.record_key}: {e}",
                tx_hash=receipt.record_key,
            )
            return self._unrecorded(report, error)

        if self.metrics:
            self.metrics.update_pnl(report.record.pnl_formatted(self.quote.decimals))
        report.outcome = CycleOutcome.EXECUTED
        report.reason = f"Settled {receipt.record_key}"
        return report

    async def _record_failure(
        self,
        report: CycleReport,
        action: TradeAction,
        error: SettlementError,
        account: AgentAccount,
    ):
        try:
            report.record = await self.ledger.record_failure(action, error, account)
        except LedgerWriteError as e:
            logger.error(f"Failed settlement {error.task_id} could not be recorded: {e}")
            if self.metrics:
                self.metrics.record_ledger_failure()

    def _failed(
        self, report: CycleReport, outcome: CycleOutcome, error: CrossVenueArbitrageError
    ) -> CycleReport:
        report.outcome = outcome
        report.error = error
        report.reason = str(error)
        return report

    def _unrecorded(self, report: CycleReport, error: LedgerWriteError) -> CycleReport:
        logger.error(
            f"Trade {error.tx_hash} executed but NOT recorded: {error}"
        )
        if self.metrics:
            self.metrics.record_ledger_failure()
        report.outcome = CycleOutcome.EXECUTED_UNRECORDED
        report.error = error
        report.reason = str(error)
        return report

    async def _read_account(self) -> Optional[AgentAccount]:
        try:
            return await self.account_reader.read_account()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Could not read agent account: {e}")
            return None

    def _finish(self, report: CycleReport):
        self.cycles_run += 1
        self.reports.append(report)
        if self.metrics:
            self.metrics.record_cycle(report.outcome.value)
        logger.info(
            f"Cycle {self.cycles_run}: {report.outcome.value} "
            f"in {format_duration(report.duration_sec)}"
            + (f" ({report.reason})" if report.reason else "")
        )

    # === LOOP ===

    @property
    def running(self) -> bool:
        return self._running

    def stop(self):
        """Stop after the current cycle."""
        self._running = False

    async def run(self, max_cycles: Optional[int] = None) -> List[CycleReport]:
        """
        Run cycles every ``cycle_interval`` seconds until stopped.

        Returns:
            Reports of the cycles run by this call when ``max_cycles`` is set,
            otherwise the most recent reports kept in ``self.reports``
        """
        self._running = True
        reports: List[CycleReport] = []
        ran = 0
        logger.info(
            f"Engine started (interval {format_duration(self.cycle_interval)}"
            + (f", {max_cycles} cycles" if max_cycles else "")
            + ")"
        )
        try:
            while self._running:
                report = await self.run_cycle()
                ran += 1
                if max_cycles is not None:
                    reports.append(report)
                    if ran >= max_cycles:
                        break
                if not self._running:
                    break
                await self.clock.sleep(self.cycle_interval)
        finally:
            self._running = False
            logger.info(f"Engine stopped after {ran} cycles")
        return reports if max_cycles is not None else list(self.reports)
