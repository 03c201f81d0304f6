"""
Account, strategy and trade-record types shared by the engine components.

Balances are integers in the asset's native decimals. The ``formatted`` values
are display derivatives recomputed from the integer balance, never trusted
from the wire.
"""

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import IntEnum
from typing import Any, Dict, List, Literal, Optional

from .exceptions import DataError, ValidationError

ActionType = Literal["swap", "addLiquidity", "removeLiquidity", "arbitrage", "none"]
TradeStatus = Literal["success", "failed"]

DEFAULT_TOKEN_DECIMALS = 18


class TradeStrategy(IntEnum):
    """Trading strategy configured on the agent contract."""

    BEST_LST = 1
    BEST_LST_WITH_LIQUIDITY = 2
    BEST_LRT = 3
    BEST_LRT_WITH_LIQUIDITY = 4
    ARBITRAGE = 5


@dataclass(frozen=True)
class StrategyProfile:
    """
    Per-strategy sizing and slippage adjustments, expressed as data.

    Attributes:
        amount_bps: Share of the risk-sized amount actually committed
        extra_slippage_bps: Added to the base slippage tolerance per reward token
        liquidity_bearing: Whether the strategy holds LP positions (APY is reported)
    """

    amount_bps: int
    extra_slippage_bps: int = 0
    liquidity_bearing: bool = False


STRATEGY_PROFILES: Dict[TradeStrategy, StrategyProfile] = {
    TradeStrategy.BEST_LST: StrategyProfile(amount_bps=9_900),
    TradeStrategy.BEST_LST_WITH_LIQUIDITY: StrategyProfile(
        amount_bps=9_900, liquidity_bearing=True
    ),
    TradeStrategy.BEST_LRT: StrategyProfile(amount_bps=9_800, extra_slippage_bps=10),
    TradeStrategy.BEST_LRT_WITH_LIQUIDITY: StrategyProfile(
        amount_bps=9_800, extra_slippage_bps=10, liquidity_bearing=True
    ),
    TradeStrategy.ARBITRAGE: StrategyProfile(amount_bps=10_000),
}


def profile_for(strategy: TradeStrategy) -> StrategyProfile:
    return STRATEGY_PROFILES[TradeStrategy(strategy)]


def to_formatted(balance: int, decimals: int) -> float:
    """Scale an integer balance down by the asset's decimals."""
    return float(Decimal(balance) / (Decimal(10) ** decimals))


def _parse_int(value: Any, what: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as e:
        raise DataError(f"Invalid integer for {what}: {value!r}") from e
    if isinstance(value, float) and value != parsed:
        raise DataError(f"Non-integral value for {what}: {value!r}")
    return parsed


@dataclass(frozen=True)
class QuoteBalance:
    balance: int
    formatted: float


@dataclass(frozen=True)
class TokenBalance:
    symbol: str
    address: str
    balance: int
    formatted: float


@dataclass(frozen=True)
class LiquidityPoolBalance:
    symbol: str
    pair_address: str
    balance: int
    formatted: float


@dataclass(frozen=True)
class AgentAccount:
    """
    Configuration and balances of the trading principal.

    Read fresh before and after every execution; never cached across cycles.
    """

    trade_strategy: TradeStrategy
    risk_level: int
    quote: QuoteBalance
    tokens: List[TokenBalance] = field(default_factory=list)
    liquidity_pools: List[LiquidityPoolBalance] = field(default_factory=list)

    def __post_init__(self):
        if not 1 <= self.risk_level <= 4:
            raise ValidationError(f"risk_level must be in 1..4, got {self.risk_level}")
        if self.quote.balance < 0:
            raise ValidationError(f"Negative quote balance: {self.quote.balance}")

    @property
    def profile(self) -> StrategyProfile:
        return profile_for(self.trade_strategy)

    def token_balance(self, address: str) -> int:
        for token in self.tokens:
            if token.address.lower() == address.lower():
                return token.balance
        return 0

    def lp_balance(self, pair_address: str) -> int:
        for lp in self.liquidity_pools:
            if lp.pair_address.lower() == pair_address.lower():
                return lp.balance
        return 0

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        quote_decimals: int = 6,
        token_decimals: Optional[Dict[str, int]] = None,
    ) -> "AgentAccount":
        """
        Build an account from the read API's ``/agent-info`` payload.

        Raises:
            DataError: If required fields are missing or malformed
        """
        token_decimals = {k.lower(): v for k, v in (token_decimals or {}).items()}
        try:
            configuration = data["configuration"]
            balances = data["balances"]
            usdc = balances["usdc"]
            strategy = TradeStrategy(_parse_int(configuration["tradeStrategy"], "tradeStrategy"))
            risk_level = _parse_int(configuration["riskLevel"], "riskLevel")
        except (KeyError, TypeError) as e:
            raise DataError(f"Malformed agent info payload: missing {e}", source="agent-info") from e
        except ValueError as e:
            raise DataError(f"Unknown trade strategy: {e}", source="agent-info") from e

        quote_raw = _parse_int(usdc.get("balance"), "usdc.balance")

        tokens = []
        for item in balances.get("tokens") or []:
            raw = _parse_int(item.get("balance"), f"{item.get('symbol')}.balance")
            decimals = token_decimals.get(
                str(item.get("address", "")).lower(), DEFAULT_TOKEN_DECIMALS
            )
            tokens.append(
                TokenBalance(
                    symbol=item.get("symbol", ""),
                    address=item.get("address", ""),
                    balance=raw,
                    formatted=to_formatted(raw, decimals),
                )
            )

        pools = []
        for item in balances.get("liquidityPools") or []:
            raw = _parse_int(item.get("balance"), f"{item.get('symbol')}.lp")
            pools.append(
                LiquidityPoolBalance(
                    symbol=item.get("symbol", ""),
                    pair_address=item.get("pairAddress", ""),
                    balance=raw,
                    formatted=to_formatted(raw, DEFAULT_TOKEN_DECIMALS),
                )
            )

        try:
            return cls(
                trade_strategy=strategy,
                risk_level=risk_level,
                quote=QuoteBalance(
                    balance=quote_raw, formatted=to_formatted(quote_raw, quote_decimals)
                ),
                tokens=tokens,
                liquidity_pools=pools,
            )
        except ValidationError as e:
            raise DataError(str(e), source="agent-info") from e


@dataclass(frozen=True)
class TradeAction:
    """An action submitted through the relay; amounts are raw integers."""

    type: ActionType
    token_a: Optional[str] = None
    token_b: Optional[str] = None
    amount_a: int = 0
    amount_b: int = 0
    reason: str = ""


@dataclass(frozen=True)
class TradeRecord:
    """
    A persisted trade outcome.

    ``pnl`` is in quote-asset raw units; ``apy`` is percent x 100, matching
    the on-chain history encoding. Immutable once persisted.
    """

    timestamp: int
    action: TradeAction
    tx_hash: str
    status: TradeStatus
    trade_strategy: int
    risk_level: int
    pnl: int
    apy: int

    def pnl_formatted(self, quote_decimals: int = 6) -> float:
        return to_formatted(self.pnl, quote_decimals)

    @property
    def apy_pct(self) -> float:
        return self.apy / 100.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Relay task states consumed by the settlement state machine
TASK_EXEC_SUCCESS = "ExecSuccess"
TASK_EXEC_REVERTED = "ExecReverted"
TASK_CANCELLED = "Cancelled"
PENDING_TASK_STATES = frozenset(
    {"CheckPending", "ExecPending", "WaitingForConfirmation", "NotFound"}
)


@dataclass(frozen=True)
class RelayStatus:
    """One status answer for a relay task; ``task_state`` None means unknown."""

    task_id: str
    task_state: Optional[str] = None
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        # unrecognised states are polled again like the known pending ones
        return not self.is_terminal

    @property
    def is_terminal(self) -> bool:
        return self.task_state in (TASK_EXEC_SUCCESS, TASK_EXEC_REVERTED, TASK_CANCELLED)
