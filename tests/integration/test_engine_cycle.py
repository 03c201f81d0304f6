"""
End-to-end cycles through the engine with every external collaborator faked.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from eth_abi import decode

from cross_venue_arbitrage.bootstrap import create_engine
from cross_venue_arbitrage.config_loader import Secrets
from cross_venue_arbitrage.config_schema import validate_engine_config
from cross_venue_arbitrage.decision_gate import DecisionGate
from cross_venue_arbitrage.encoding import selector
from cross_venue_arbitrage.engine import ArbitrageEngine, CycleOutcome
from cross_venue_arbitrage.exceptions import (
    ConfigurationError,
    LedgerWriteError,
    NetworkError,
    OracleError,
)
from cross_venue_arbitrage.ledger import InMemoryLedgerStore, TradeLedger
from cross_venue_arbitrage.models import RelayStatus, TradeAction
from cross_venue_arbitrage.relay import RelayExecutor
from cross_venue_arbitrage.sizing import ExecutionSizer
from dex.abi import ARBITRAGE_SIGNATURE, EXECUTE_SWAP_SIGNATURE
from dex.pool_loader import VenuePoolLoader
from dex.scanner import OpportunityScanner
from dex.types import PoolReserves, QuoteAsset

from tests.helpers import (
    AGENT_ADDRESS,
    CHAIN_ID,
    QUOTE_ADDRESS,
    TOKEN_A,
    TOKEN_B,
    ScriptedRelayClient,
    make_account,
    make_pool,
    pending,
    success,
)

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]

TX_HASH = "0x" + "ab" * 32
OTHER_TX_HASH = "0x" + "cd" * 32
ONE_TOKEN = 10**18
QUOTE = QuoteAsset(address=QUOTE_ADDRESS, symbol="USDC", decimals=6)

# 2000 vs 2100 quote per token: primary is 5% cheaper
PRIMARY_POOL = make_pool("0x" + "a" * 40, TOKEN_A, 2_000_000_000, ONE_TOKEN, symbol="stETH")
SECONDARY_POOL = make_pool(
    "0x" + "b" * 40, TOKEN_A, 2_100_000_000, ONE_TOKEN, venue="secondary", symbol="stETH"
)


class StaticSource:
    def __init__(self, pools=(), error=None):
        self.pools = list(pools)
        self.error = error
        self.on_fetch = None

    async def fetch_pools(self):
        if self.on_fetch is not None:
            self.on_fetch()
        if self.error is not None:
            raise self.error
        return self.pools


class SequenceAccountReader:
    """Returns the given accounts in order (an Exception entry is raised)."""

    def __init__(self, *accounts):
        self.accounts = list(accounts)
        self.reads = 0

    async def read_account(self):
        self.reads += 1
        item = self.accounts.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FailingStore(InMemoryLedgerStore):
    async def append(self, record):
        raise RuntimeError("disk full")


class BlockingRelayClient(ScriptedRelayClient):
    """Holds every status query until ``release`` is set."""

    def __init__(self, statuses=None):
        super().__init__(statuses)
        self.polling = asyncio.Event()
        self.release = asyncio.Event()

    async def get_status(self, task_id):
        self.polling.set()
        await self.release.wait()
        return await super().get_status(task_id)


class Harness:
    def __init__(
        self,
        clock,
        metrics,
        accounts=(),
        statuses=(),
        answer="Yes",
        primary_pools=(PRIMARY_POOL,),
        secondary_pools=(SECONDARY_POOL,),
        store=None,
        relay_client=None,
        history_size=100,
    ):
        self.primary_source = StaticSource(primary_pools)
        self.secondary_source = StaticSource(secondary_pools)
        self.reader = SequenceAccountReader(*accounts)
        self.oracle = AsyncMock()
        if isinstance(answer, Exception):
            self.oracle.analyze.side_effect = answer
        else:
            self.oracle.analyze.return_value = answer
        self.relay_client = relay_client or ScriptedRelayClient(list(statuses))
        self.store = store or InMemoryLedgerStore()
        self.clock = clock
        self.metrics = metrics
        self.engine = ArbitrageEngine(
            VenuePoolLoader("primary", self.primary_source),
            VenuePoolLoader("secondary", self.secondary_source),
            OpportunityScanner(QUOTE),
            self.reader,
            DecisionGate(self.oracle),
            ExecutionSizer(),
            RelayExecutor(
                self.relay_client, CHAIN_ID, AGENT_ADDRESS, clock=clock, metrics=metrics
            ),
            TradeLedger(self.store, QUOTE, clock=clock),
            QUOTE,
            clock=clock,
            metrics=metrics,
            history_size=history_size,
        )

    def submitted_args(self, signature, types):
        [(_, _, data)] = self.relay_client.submissions
        assert data[:4] == selector(signature)
        return list(decode(types, data[4:]))


class TestArbitrageCycle:
    async def test_executes_and_records_profit(self, clock, metrics, registry):
        h = Harness(
            clock,
            metrics,
            accounts=[make_account(1_000_000_000), make_account(1_005_000_000)],
            statuses=[success(tx_hash=TX_HASH)],
        )

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.EXECUTED
        assert report.executed
        assert report.opportunity.buy_from_primary
        assert report.sizing.amount == 100_000_000
        assert h.submitted_args(
            ARBITRAGE_SIGNATURE, ["address", "uint256", "bool", "uint256"]
        ) == [TOKEN_A, 100_000_000, True, 100_000]

        [record] = await h.store.history()
        assert record == report.record
        assert record.tx_hash == TX_HASH
        assert record.status == "success"
        assert record.pnl == 5_000_000
        assert record.action.type == "arbitrage"
        assert record.action.token_b == TOKEN_A
        assert record.action.reason == "Yes"

        engine = {"engine": "cross-venue-arbitrage"}
        assert registry.get_sample_value(
            "cross_venue_arbitrage_cycles_total", {**engine, "outcome": "executed"}
        ) == 1
        assert registry.get_sample_value(
            "cross_venue_arbitrage_last_realized_pnl", engine
        ) == 5.0

    async def test_no_opportunity_skips_account_and_oracle(self, clock, metrics):
        h = Harness(clock, metrics, secondary_pools=())

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.NO_OPPORTUNITY
        assert h.reader.reads == 0
        h.oracle.analyze.assert_not_awaited()

    async def test_failed_venue_means_no_opportunity(self, clock, metrics):
        h = Harness(clock, metrics)
        h.secondary_source.error = NetworkError("rpc down")

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.NO_OPPORTUNITY
        assert h.relay_client.submissions == []

    async def test_oracle_says_no(self, clock, metrics):
        h = Harness(clock, metrics, accounts=[make_account()], answer="No, spread too thin.")

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.SKIPPED
        assert report.reason == "No, spread too thin."
        assert h.relay_client.submissions == []

    async def test_oracle_failure_skips(self, clock, metrics):
        h = Harness(clock, metrics, accounts=[make_account()], answer=OracleError("HTTP 500"))

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.SKIPPED
        assert report.decision.oracle_failed
        assert h.relay_client.submissions == []

    async def test_account_unavailable_skips(self, clock, metrics):
        h = Harness(clock, metrics, accounts=[NetworkError("read api down")])

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.SKIPPED
        assert report.reason == "Agent account unavailable"
        h.oracle.analyze.assert_not_awaited()

    async def test_zero_balance_skips(self, clock, metrics):
        h = Harness(clock, metrics, accounts=[make_account(quote_balance=0)])

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.SKIPPED
        assert report.reason == "Sized amount is zero"
        assert h.relay_client.submissions == []

    async def test_revert_writes_failed_record(self, clock, metrics):
        h = Harness(
            clock,
            metrics,
            accounts=[make_account()],
            statuses=[RelayStatus("0xtask", "ExecReverted", transaction_hash="0xrev")],
        )

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.REVERTED
        assert h.reader.reads == 1
        [record] = await h.store.history()
        assert record.tx_hash == "0xrev"
        assert record.status == "failed"
        assert record.pnl == 0

    async def test_cancelled_task(self, clock, metrics):
        h = Harness(clock, metrics, accounts=[make_account()], statuses=["Cancelled"])

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.CANCELLED
        [record] = await h.store.history()
        assert record.tx_hash == "0xtask"

    async def test_settlement_timeout(self, clock, metrics):
        h = Harness(clock, metrics, accounts=[make_account()], statuses=pending(12))

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.TIMED_OUT
        assert h.relay_client.status_calls == 12
        assert clock.sleeps == [5.0] * 11
        assert await h.store.history() == []

    async def test_submission_failure(self, clock, metrics):
        h = Harness(clock, metrics, accounts=[make_account()])
        h.relay_client.submit_error = NetworkError("relay unreachable")

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.SUBMISSION_FAILED
        assert h.relay_client.status_calls == 0

    async def test_ledger_failure_is_executed_unrecorded(self, clock, metrics, registry):
        h = Harness(
            clock,
            metrics,
            accounts=[make_account(), make_account(1_001_000_000)],
            statuses=[success(tx_hash=TX_HASH)],
            store=FailingStore(),
        )

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.EXECUTED_UNRECORDED
        assert report.executed
        assert report.receipt.transaction_hash == TX_HASH
        assert report.record is None
        assert registry.get_sample_value(
            "cross_venue_arbitrage_ledger_write_failures_total",
            {"engine": "cross-venue-arbitrage"},
        ) == 1

    async def test_post_trade_read_failure_is_executed_unrecorded(self, clock, metrics):
        h = Harness(
            clock,
            metrics,
            accounts=[make_account(), NetworkError("read api down")],
            statuses=[success(tx_hash=TX_HASH)],
        )

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.EXECUTED_UNRECORDED
        assert "Post-trade balances unavailable" in report.reason
        assert await h.store.history() == []

    async def test_lp_in_pool_without_quote_side_still_executes(self, clock, metrics):
        lp_pair = "0x" + "d" * 40
        non_quote_pool = PoolReserves(
            pair_address=lp_pair,
            token0=TOKEN_A,
            token1=TOKEN_B,
            reserve0=1_000,
            reserve1=2_000,
            total_supply=100,
            venue="secondary",
        )
        h = Harness(
            clock,
            metrics,
            accounts=[
                make_account(1_000_000_000),
                make_account(1_005_000_000, liquidity_pools=[(lp_pair, 10)]),
            ],
            statuses=[success(tx_hash=TX_HASH)],
            secondary_pools=(SECONDARY_POOL, non_quote_pool),
        )

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.EXECUTED
        assert report.record.pnl == 5_000_000

    async def test_unexpected_ledger_error_is_executed_unrecorded(self, clock, metrics):
        h = Harness(
            clock,
            metrics,
            accounts=[make_account(), make_account(1_001_000_000)],
            statuses=[success(tx_hash=TX_HASH)],
        )
        h.engine.ledger.record_success = AsyncMock(side_effect=RuntimeError("boom"))

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.EXECUTED_UNRECORDED
        assert isinstance(report.error, LedgerWriteError)
        assert report.error.tx_hash == TX_HASH
        assert "boom" in report.reason


class TestEngineLoop:
    async def test_run_sleeps_between_cycles(self, clock, metrics):
        h = Harness(clock, metrics, primary_pools=())

        reports = await h.engine.run(max_cycles=3)

        assert [r.outcome for r in reports] == [CycleOutcome.NO_OPPORTUNITY] * 3
        assert clock.sleeps == [60.0, 60.0]
        assert h.engine.cycles_run == 3
        assert len(h.engine.reports) == 3
        assert not h.engine.running

    async def test_stop_ends_loop_after_current_cycle(self, clock, metrics):
        h = Harness(clock, metrics, primary_pools=())
        h.primary_source.on_fetch = h.engine.stop

        reports = await h.engine.run()

        assert len(reports) == 1
        assert clock.sleeps == []

    async def test_unexpected_error_does_not_stop_loop(self, clock, metrics):
        h = Harness(clock, metrics)
        h.engine.scanner.scan = lambda primary, secondary: 1 / 0

        reports = await h.engine.run(max_cycles=2)

        assert [r.outcome for r in reports] == [CycleOutcome.FAILED] * 2
        assert isinstance(reports[0].error, ZeroDivisionError)

    async def test_unbounded_run_returns_only_recent_history(self, clock, metrics):
        h = Harness(clock, metrics, primary_pools=(), history_size=2)
        fetches = []

        def stop_after_three():
            fetches.append(1)
            if len(fetches) == 3:
                h.engine.stop()

        h.primary_source.on_fetch = stop_after_three

        reports = await h.engine.run()

        assert h.engine.cycles_run == 3
        assert len(reports) == 2
        assert reports == list(h.engine.reports)


class TestExecuteAction:
    async def test_swap(self, clock, metrics):
        h = Harness(
            clock,
            metrics,
            accounts=[
                make_account(1_000_000_000),
                make_account(999_000_000, tokens=[(TOKEN_A, 500)]),
            ],
            statuses=[success(tx_hash=TX_HASH)],
        )
        action = TradeAction("swap", QUOTE_ADDRESS, TOKEN_A, 1_000_000, 500, "rebalance")

        report = await h.engine.execute_action(action)

        assert report.outcome == CycleOutcome.EXECUTED
        assert h.submitted_args(
            EXECUTE_SWAP_SIGNATURE, ["address", "uint256", "uint256", "bool"]
        ) == [TOKEN_A, 1_000_000, 497, True]
        assert report.record.action.type == "swap"
        assert report.record.status == "success"
        h.oracle.analyze.assert_not_awaited()

    async def test_none_action_is_skipped(self, clock, metrics):
        h = Harness(clock, metrics, accounts=[make_account()])

        report = await h.engine.execute_action(TradeAction("none"))

        assert report.outcome == CycleOutcome.SKIPPED
        assert h.relay_client.submissions == []


def engine_config(tmp_path, **overrides):
    pairs = {
        "stETH": {
            "address": "0x" + "c" * 40,
            "token0": QUOTE_ADDRESS,
            "token1": TOKEN_A,
            "reserve0": "2000000000",
            "reserve1": str(ONE_TOKEN),
        }
    }
    snapshot = tmp_path / "deployments.json"
    snapshot.write_text(json.dumps({"pairs": pairs}))
    config = {
        "quote_asset": {"address": QUOTE_ADDRESS},
        "venues": [
            {"name": "primary", "source": "snapshot", "snapshot_path": str(snapshot)},
            {"name": "secondary", "source": "snapshot", "snapshot_path": str(snapshot)},
        ],
        "relay": {"chain_id": CHAIN_ID, "agent_address": AGENT_ADDRESS},
        "ledger": {"path": str(tmp_path / "ledger.db")},
    }
    config.update(overrides)
    return validate_engine_config(config)


class TestSingleSubmission:
    async def test_action_waits_for_cycle_in_settlement(self, clock, metrics):
        relay_client = BlockingRelayClient(
            [success(tx_hash=TX_HASH), success(tx_hash=OTHER_TX_HASH)]
        )
        h = Harness(
            clock,
            metrics,
            accounts=[
                make_account(1_000_000_000),
                make_account(1_005_000_000),
                make_account(1_000_000_000),
                make_account(999_000_000, tokens=[(TOKEN_A, 500)]),
            ],
            relay_client=relay_client,
        )
        swap = TradeAction("swap", QUOTE_ADDRESS, TOKEN_A, 1_000_000, 500, "rebalance")

        cycle_task = asyncio.create_task(h.engine.run_cycle())
        await relay_client.polling.wait()
        action_task = asyncio.create_task(h.engine.execute_action(swap))
        for _ in range(10):
            await asyncio.sleep(0)

        assert len(relay_client.submissions) == 1
        assert not action_task.done()
        assert h.reader.reads == 1

        relay_client.release.set()
        cycle_report, action_report = await asyncio.gather(cycle_task, action_task)

        assert cycle_report.outcome == CycleOutcome.EXECUTED
        assert action_report.outcome == CycleOutcome.EXECUTED
        first, second = [data for _, _, data in relay_client.submissions]
        assert first[:4] == selector(ARBITRAGE_SIGNATURE)
        assert second[:4] == selector(EXECUTE_SWAP_SIGNATURE)
        assert [r.tx_hash for r in await h.store.history()] == [TX_HASH, OTHER_TX_HASH]

    async def test_concurrent_cycles_submit_once_at_a_time(self, clock, metrics):
        relay_client = BlockingRelayClient([success(tx_hash=TX_HASH)])
        h = Harness(
            clock,
            metrics,
            accounts=[
                make_account(1_000_000_000),
                make_account(1_005_000_000),
                make_account(quote_balance=0),
            ],
            relay_client=relay_client,
        )

        first = asyncio.create_task(h.engine.run_cycle())
        await relay_client.polling.wait()
        second = asyncio.create_task(h.engine.run_cycle())
        for _ in range(10):
            await asyncio.sleep(0)

        assert len(relay_client.submissions) == 1
        assert h.oracle.analyze.await_count == 1

        relay_client.release.set()
        first_report, second_report = await asyncio.gather(first, second)

        assert first_report.outcome == CycleOutcome.EXECUTED
        assert second_report.outcome == CycleOutcome.SKIPPED
        assert second_report.reason == "Sized amount is zero"
        assert len(relay_client.submissions) == 1

    async def test_outstanding_relay_task_skips_cycle(self, clock, metrics):
        relay_client = BlockingRelayClient([success(tx_hash=TX_HASH)])
        h = Harness(clock, metrics, relay_client=relay_client)
        request = h.engine.relay.build_request(b"\x00" * 4, label="manual")

        outstanding = asyncio.create_task(h.engine.relay.execute(request))
        await relay_client.polling.wait()

        report = await h.engine.run_cycle()

        assert report.outcome == CycleOutcome.SKIPPED
        assert report.reason == "Relay task still outstanding"
        assert len(relay_client.submissions) == 1
        assert h.reader.reads == 0

        relay_client.release.set()
        receipt = await outstanding
        assert receipt.transaction_hash == TX_HASH


class TestBootstrap:
    async def test_wires_snapshot_venues(self, tmp_path, clock):
        runtime = create_engine(
            engine_config(tmp_path), Secrets(sponsor_api_key="sponsor"), clock=clock
        )
        try:
            assert runtime.web3 is None
            assert runtime.engine.relay.chain_id == CHAIN_ID
            pools = await runtime.engine.primary.load_pools()
            assert [p.token1_symbol for p in pools] == ["stETH"]
        finally:
            await runtime.close()

    async def test_missing_sponsor_key(self, tmp_path):
        with pytest.raises(ConfigurationError, match="sponsor key"):
            create_engine(engine_config(tmp_path), Secrets())

    async def test_factory_venue_needs_rpc(self, tmp_path):
        config = engine_config(
            tmp_path,
            venues=[
                {"name": "primary", "source": "api"},
                {
                    "name": "secondary",
                    "source": "factory",
                    "factory_address": "0x" + "f" * 40,
                },
            ],
        )

        with pytest.raises(ConfigurationError, match="RPC"):
            create_engine(config, Secrets(sponsor_api_key="sponsor"))
