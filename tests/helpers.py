"""
Builders and collaborator doubles shared by the unit and integration tests.
"""

from typing import Iterable, List, Optional

from cross_venue_arbitrage.models import (
    AgentAccount,
    LiquidityPoolBalance,
    QuoteBalance,
    RelayStatus,
    TokenBalance,
    TradeStrategy,
    to_formatted,
)
from dex.types import ArbitrageOpportunity, PoolReserves

# Digit-only addresses are their own checksum form
QUOTE_ADDRESS = "0x9999999999999999999999999999999999999999"
TOKEN_A = "0x1111111111111111111111111111111111111111"
TOKEN_B = "0x2222222222222222222222222222222222222222"
AGENT_ADDRESS = "0x5555555555555555555555555555555555555555"
CHAIN_ID = 84532


def make_pool(
    pair_address: str,
    token: str,
    quote_reserve: int,
    token_reserve: int,
    venue: str = "primary",
    quote_first: bool = True,
    symbol: str = "TKN",
    **extra,
) -> PoolReserves:
    if quote_first:
        return PoolReserves(
            pair_address=pair_address,
            token0=QUOTE_ADDRESS,
            token1=token,
            reserve0=quote_reserve,
            reserve1=token_reserve,
            token0_symbol="USDC",
            token1_symbol=symbol,
            venue=venue,
            **extra,
        )
    return PoolReserves(
        pair_address=pair_address,
        token0=token,
        token1=QUOTE_ADDRESS,
        reserve0=token_reserve,
        reserve1=quote_reserve,
        token0_symbol=symbol,
        token1_symbol="USDC",
        venue=venue,
        **extra,
    )


def make_account(
    quote_balance: int = 1_000_000_000,
    risk_level: int = 1,
    strategy: TradeStrategy = TradeStrategy.ARBITRAGE,
    tokens: Iterable[tuple] = (),
    liquidity_pools: Iterable[tuple] = (),
) -> AgentAccount:
    """``tokens`` are (address, balance); ``liquidity_pools`` are (pair, balance)."""
    return AgentAccount(
        trade_strategy=strategy,
        risk_level=risk_level,
        quote=QuoteBalance(quote_balance, to_formatted(quote_balance, 6)),
        tokens=[
            TokenBalance("TKN", address, balance, to_formatted(balance, 18))
            for address, balance in tokens
        ],
        liquidity_pools=[
            LiquidityPoolBalance("LP", pair, balance, to_formatted(balance, 18))
            for pair, balance in liquidity_pools
        ],
    )


def make_opportunity(
    token: str = TOKEN_A,
    symbol: str = "TKN",
    diff: float = 4.0,
    slippage: float = 0.5,
    buy_from_primary: bool = False,
) -> ArbitrageOpportunity:
    primary = make_pool("0x" + "a" * 40, token, 1_000_000, 500, symbol=symbol)
    secondary = make_pool("0x" + "b" * 40, token, 1_000_000, 520, venue="secondary", symbol=symbol)
    return ArbitrageOpportunity(
        token_address=token,
        token_symbol=symbol,
        primary_pool=primary,
        secondary_pool=secondary,
        primary_price=2000.0,
        secondary_price=1923.0769,
        price_diff_percent=diff,
        buy_from_primary=buy_from_primary,
        estimated_profit=diff - slippage,
    )


class ScriptedRelayClient:
    """Relay client double that replays a list of statuses (or exceptions)."""

    def __init__(self, statuses: Optional[List] = None, task_id: str = "0xtask"):
        self.statuses = list(statuses or [])
        self.task_id = task_id
        self.submissions: List[tuple] = []
        self.status_calls = 0
        self.submit_error: Optional[Exception] = None

    async def submit(self, chain_id: int, target: str, data: bytes) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submissions.append((chain_id, target, data))
        return self.task_id

    async def get_status(self, task_id: str) -> RelayStatus:
        self.status_calls += 1
        if not self.statuses:
            return RelayStatus(task_id=task_id, task_state="ExecPending")
        item = self.statuses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, RelayStatus):
            return item
        return RelayStatus(task_id=task_id, task_state=item)


def pending(n: int) -> List[str]:
    return ["ExecPending"] * n


def success(tx_hash: str = "0x" + "ab" * 32, task_id: str = "0xtask") -> RelayStatus:
    return RelayStatus(
        task_id=task_id,
        task_state="ExecSuccess",
        transaction_hash=tx_hash,
        block_number=123,
        gas_used=21000,
    )


