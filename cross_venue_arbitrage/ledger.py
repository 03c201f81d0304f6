"""
Trade ledger: post-settlement P&L/APY accounting and durable trade records.

P&L is computed once, after settlement, from the account balances read
immediately before and after the execution:

    pnl = quote delta
        + value of each non-quote token delta (priced against its quote pool)
        + value of each LP token delta (pool value per LP token, when the pool
          reports its total supply)

``pnl`` is stored in quote raw units and ``apy`` as percent x 100.
"""

import asyncio
from fractions import Fraction
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import aiosqlite

from dex.normalizer import quote_value
from dex.types import PoolReserves, QuoteAsset

from .exceptions import DataError, LedgerWriteError, SettlementError
from .interfaces import AsyncClock, LedgerStore, SystemClock
from .models import AgentAccount, TradeAction, TradeRecord
from .relay import SettlementReceipt
from .utils import get_logger

logger = get_logger(__name__)


def _pool_for_token(
    pools: Iterable[PoolReserves], token: str, quote: QuoteAsset
) -> Optional[PoolReserves]:
    for pool in pools:
        if pool.has_token(token) and pool.has_token(quote.address) and pool.has_liquidity:
            return pool
    return None


def _pool_by_address(pools: Iterable[PoolReserves], pair_address: str) -> Optional[PoolReserves]:
    for pool in pools:
        if pool.pair_address.lower() == pair_address.lower():
            return pool
    return None


def lp_value(pool: PoolReserves, lp_amount: int, quote: QuoteAsset) -> Optional[int]:
    """Quote value of ``lp_amount`` LP tokens: both sides valued at the quote reserve."""
    if not pool.total_supply:
        return None
    quote_reserve = pool.reserve_of(quote.address)
    return int(Fraction(2 * quote_reserve * lp_amount, pool.total_supply))


def compute_pnl(
    before: AgentAccount,
    after: AgentAccount,
    pools: Sequence[PoolReserves],
    quote: QuoteAsset,
    token_decimals: Optional[Mapping[str, int]] = None,
) -> int:
    pnl = after.quote.balance - before.quote.balance

    token_addresses = {t.address.lower(): t.address for t in before.tokens + after.tokens}
    for address in token_addresses.values():
        if quote.matches(address):
            continue
        delta = after.token_balance(address) - before.token_balance(address)
        if delta == 0:
            continue
        pool = _pool_for_token(pools, address, quote)
        if pool is None:
            logger.warning(f"No quote pool to value {address} delta {delta}; left out of P&L")
            continue
        try:
            pnl += quote_value(pool, address, delta, quote, token_decimals)
        except DataError as e:
            logger.warning(f"Could not value {address} delta: {e}")

    lp_addresses = {
        lp.pair_address.lower(): lp.pair_address
        for lp in before.liquidity_pools + after.liquidity_pools
    }
    for pair_address in lp_addresses.values():
        delta = after.lp_balance(pair_address) - before.lp_balance(pair_address)
        if delta == 0:
            continue
        pool = _pool_by_address(pools, pair_address)
        try:
            value = lp_value(pool, delta, quote) if pool is not None else None
        except DataError as e:
            logger.warning(f"Could not value LP {pair_address} delta: {e}")
            continue
        if value is None:
            logger.warning(f"No LP valuation for {pair_address}; left out of P&L")
            continue
        pnl += value

    return pnl


def compute_apy(
    before: AgentAccount, after: AgentAccount, pools: Sequence[PoolReserves]
) -> int:
    """Advisory APY (percent x 100) of the pool whose LP balance grew, else 0."""
    if not after.profile.liquidity_bearing:
        return 0
    for lp in after.liquidity_pools:
        if lp.balance > before.lp_balance(lp.pair_address):
            pool = _pool_by_address(pools, lp.pair_address)
            if pool is None or pool.apy is None:
                continue
            try:
                return int(round(float(pool.apy) * 100))
            except (TypeError, ValueError, OverflowError):
                logger.warning(f"Ignoring unusable APY {pool.apy!r} on {pool.pair_address}")
    return 0


class TradeLedger:
    """
    Computes and persists one TradeRecord per settled execution.

    Persistence failures are raised as LedgerWriteError so an executed but
    unrecorded trade is never confused with a failed execution.
    """

    def __init__(
        self,
        store: LedgerStore,
        quote: QuoteAsset,
        token_decimals: Optional[Mapping[str, int]] = None,
        record_failures: bool = True,
        clock: Optional[AsyncClock] = None,
    ):
        self.store = store
        self.quote = quote
        self.token_decimals = dict(token_decimals or {})
        self.record_failures = record_failures
        self.clock = clock or SystemClock()

    def compute(
        self,
        before: AgentAccount,
        after: AgentAccount,
        pools: Sequence[PoolReserves],
    ) -> Tuple[int, int]:
        return (
            compute_pnl(before, after, pools, self.quote, self.token_decimals),
            compute_apy(before, after, pools),
        )

    async def _append(self, record: TradeRecord):
        try:
            await self.store.append(record)
        except LedgerWriteError:
            raise
        except Exception as e:
            raise LedgerWriteError(
                f"Failed to persist trade {record.tx_hash}: {e}", tx_hash=record.tx_hash
            ) from e

    async def record_success(
        self,
        action: TradeAction,
        receipt: SettlementReceipt,
        before: AgentAccount,
        after: AgentAccount,
        pools: Sequence[PoolReserves],
    ) -> TradeRecord:
        pnl, apy = self.compute(before, after, pools)
        record = TradeRecord(
            timestamp=int(self.clock.now()),
            action=action,
            tx_hash=receipt.record_key,
            status="success",
            trade_strategy=int(before.trade_strategy),
            risk_level=before.risk_level,
            pnl=pnl,
            apy=apy,
        )
        await self._append(record)
        logger.info(f"Recorded trade {record.tx_hash}: pnl={pnl} apy={apy}")
        return record

    async def record_failure(
        self, action: TradeAction, error: SettlementError, account: AgentAccount
    ) -> Optional[TradeRecord]:
        """Record a reverted or cancelled task with zero P&L, if enabled."""
        if not self.record_failures:
            return None
        key = error.transaction_hash or error.task_id
        if not key:
            return None
        record = TradeRecord(
            timestamp=int(self.clock.now()),
            action=action,
            tx_hash=key,
            status="failed",
            trade_strategy=int(account.trade_strategy),
            risk_level=account.risk_level,
            pnl=0,
            apy=0,
        )
        await self._append(record)
        return record

    async def history(self) -> List[TradeRecord]:
        return await self.store.history()


class InMemoryLedgerStore:
    """Append-only in-process store, for dry runs and tests."""

    def __init__(self):
        self._records: Dict[str, TradeRecord] = {}

    async def append(self, record: TradeRecord) -> None:
        if record.tx_hash in self._records:
            raise LedgerWriteError(f"Duplicate trade record {record.tx_hash}", tx_hash=record.tx_hash)
        self._records[record.tx_hash] = record

    async def history(self) -> List[TradeRecord]:
        newest_first = list(reversed(list(self._records.values())))
        return sorted(newest_first, key=lambda r: r.timestamp, reverse=True)


class SqliteLedgerStore:
    """Trade records in SQLite, keyed by transaction hash."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def initialize(self):
        if self._conn is not None:
            return
        async with self._lock:
            if self._conn is not None:
                return
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(self.db_path)
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trade_records (
                    tx_hash TEXT PRIMARY KEY,
                    timestamp INTEGER NOT NULL,
                    action_type TEXT NOT NULL,
                    token_a TEXT,
                    token_b TEXT,
                    amount_a TEXT NOT NULL,  -- raw integers can exceed 64 bits
                    amount_b TEXT NOT NULL,
                    reason TEXT,
                    status TEXT NOT NULL,
                    trade_strategy INTEGER NOT NULL,
                    risk_level INTEGER NOT NULL,
                    pnl TEXT NOT NULL,
                    apy INTEGER NOT NULL,
                    seq INTEGER
                )
                """
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_trade_timestamp ON trade_records(timestamp)"
            )
            await conn.commit()
            self._conn = conn
            logger.info(f"Trade ledger ready at {self.db_path}")

    async def close(self):
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def append(self, record: TradeRecord) -> None:
        await self.initialize()
        action = record.action
        try:
            await self._conn.execute(
                """
                INSERT INTO trade_records (
                    tx_hash, timestamp, action_type, token_a, token_b, amount_a,
                    amount_b, reason, status, trade_strategy, risk_level, pnl, apy, seq
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                    (SELECT COALESCE(MAX(seq), 0) + 1 FROM trade_records))
                """,
                (
                    record.tx_hash,
                    record.timestamp,
                    action.type,
                    action.token_a,
                    action.token_b,
                    str(action.amount_a),
                    str(action.amount_b),
                    action.reason,
                    record.status,
                    record.trade_strategy,
                    record.risk_level,
                    str(record.pnl),
                    record.apy,
                ),
            )
            await self._conn.commit()
        except aiosqlite.IntegrityError as e:
            raise LedgerWriteError(
                f"Duplicate trade record {record.tx_hash}", tx_hash=record.tx_hash
            ) from e
        except aiosqlite.Error as e:
            raise LedgerWriteError(
                f"Failed to write trade {record.tx_hash}: {e}", tx_hash=record.tx_hash
            ) from e

    async def history(self) -> List[TradeRecord]:
        await self.initialize()
        async with self._conn.execute(
            """
            SELECT tx_hash, timestamp, action_type, token_a, token_b, amount_a,
                   amount_b, reason, status, trade_strategy, risk_level, pnl, apy
            FROM trade_records
            ORDER BY timestamp DESC, seq DESC
            """
        ) as cursor:
            rows = await cursor.fetchall()

        return [
            TradeRecord(
                timestamp=row[1],
                action=TradeAction(
                    type=row[2],
                    token_a=row[3],
                    token_b=row[4],
                    amount_a=int(row[5]),
                    amount_b=int(row[6]),
                    reason=row[7] or "",
                ),
                tx_hash=row[0],
                status=row[8],
                trade_strategy=row[9],
                risk_level=row[10],
                pnl=int(row[11]),
                apy=row[12],
            )
            for row in rows
        ]
