"""
Core data types for cross-venue arbitrage scanning.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from cross_venue_arbitrage.exceptions import DataError


def _reserve(value: Any, name: str, pair: str) -> int:
    if isinstance(value, bool):
        raise DataError(f"{name} of {pair} is not an integer: {value!r}", source=pair)
    try:
        parsed = int(str(value), 10) if isinstance(value, str) else int(value)
    except (TypeError, ValueError) as e:
        raise DataError(f"{name} of {pair} is not an integer: {value!r}", source=pair) from e
    if isinstance(value, float) and value != parsed:
        raise DataError(f"{name} of {pair} is fractional: {value!r}", source=pair)
    return parsed


@dataclass(frozen=True)
class PoolReserves:
    """
    One AMM pair on one venue, as fetched for a single scan cycle.

    Attributes:
        pair_address: On-chain address of the pair contract
        token0: Address of token0
        token1: Address of token1
        reserve0: Reserve of token0 in venue-native decimals
        reserve1: Reserve of token1 in venue-native decimals
        token0_symbol: Display symbol of token0
        token1_symbol: Display symbol of token1
        apy: Advisory APY in percent (not authoritative)
        slashing_history: Advisory slashing count (not authoritative)
        total_supply: LP token supply, when the source reports it
        venue: Name of the venue the pool was loaded from
    """

    pair_address: str
    token0: str
    token1: str
    reserve0: int
    reserve1: int
    token0_symbol: str = ""
    token1_symbol: str = ""
    apy: Optional[float] = None
    slashing_history: Optional[float] = None
    total_supply: Optional[int] = None
    venue: str = ""

    def __post_init__(self):
        for name in ("pair_address", "token0", "token1"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise DataError(
                    f"Pool has invalid {name}: {value!r}", source=self.venue or None
                )
        if self.reserve0 < 0 or self.reserve1 < 0:
            raise DataError(
                f"Negative reserves on {self.pair_address}: "
                f"{self.reserve0}/{self.reserve1}",
                source=self.pair_address,
            )

    @property
    def token_set(self) -> FrozenSet[str]:
        """Unordered, case-insensitive token pair used for cross-venue matching."""
        return frozenset((self.token0.lower(), self.token1.lower()))

    @property
    def pair_name(self) -> str:
        return f"{self.token0_symbol or self.token0}/{self.token1_symbol or self.token1}"

    @property
    def has_liquidity(self) -> bool:
        return self.reserve0 > 0 and self.reserve1 > 0

    def has_token(self, address: str) -> bool:
        return address.lower() in self.token_set

    def reserve_of(self, address: str) -> int:
        if address.lower() == self.token0.lower():
            return self.reserve0
        if address.lower() == self.token1.lower():
            return self.reserve1
        raise DataError(f"{address} is not a token of {self.pair_address}")

    def other_token(self, address: str) -> str:
        if address.lower() == self.token0.lower():
            return self.token1
        if address.lower() == self.token1.lower():
            return self.token0
        raise DataError(f"{address} is not a token of {self.pair_address}")

    def symbol_of(self, address: str) -> str:
        if address.lower() == self.token0.lower():
            return self.token0_symbol
        if address.lower() == self.token1.lower():
            return self.token1_symbol
        return ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any], venue: str = "") -> "PoolReserves":
        """
        Parse a pool from the read API's camelCase payload.

        Raises:
            DataError: If required fields are missing or reserves are invalid
        """
        try:
            pair = data["pairAddress"]
            token0 = data["token0"]
            token1 = data["token1"]
        except (KeyError, TypeError) as e:
            raise DataError(f"Pool payload missing {e}", source=venue) from e

        total_supply = data.get("totalSupply")
        return cls(
            pair_address=pair,
            token0=token0,
            token1=token1,
            reserve0=_reserve(data.get("reserve0"), "reserve0", pair),
            reserve1=_reserve(data.get("reserve1"), "reserve1", pair),
            token0_symbol=data.get("token0Symbol", "") or "",
            token1_symbol=data.get("token1Symbol", "") or "",
            apy=data.get("apy"),
            slashing_history=data.get("slashingHistory"),
            total_supply=(
                _reserve(total_supply, "totalSupply", pair)
                if total_supply is not None
                else None
            ),
            venue=venue,
        )


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """
    A detected, threshold-passing price divergence for one token across two venues.

    Attributes:
        token_address: Base (non-quote) token being arbitraged
        token_symbol: Display symbol of the base token
        primary_pool: Pool on the primary venue
        secondary_pool: Matching pool on the secondary venue
        primary_price: Quote-per-base price on the primary venue
        secondary_price: Quote-per-base price on the secondary venue
        price_diff_percent: |p - s| / min(p, s) * 100
        buy_from_primary: True when the primary venue is the cheaper side
        estimated_profit: price_diff_percent minus the slippage haircut (percent)
        price_scale: Factor turning raw-unit prices into human-unit prices
    """

    token_address: str
    token_symbol: str
    primary_pool: PoolReserves
    secondary_pool: PoolReserves
    primary_price: float
    secondary_price: float
    price_diff_percent: float
    buy_from_primary: bool
    estimated_profit: float
    price_scale: float = 1.0

    @property
    def is_attractive(self) -> bool:
        """Whether the opportunity still shows profit after the slippage haircut."""
        return self.estimated_profit > 0

    @property
    def primary_display_price(self) -> float:
        return self.primary_price * self.price_scale

    @property
    def secondary_display_price(self) -> float:
        return self.secondary_price * self.price_scale

    def summary(self) -> Dict[str, Any]:
        return {
            "token": self.token_symbol,
            "token_address": self.token_address,
            "primary_pair": self.primary_pool.pair_address,
            "secondary_pair": self.secondary_pool.pair_address,
            "primary_price": self.primary_price,
            "secondary_price": self.secondary_price,
            "price_diff_pct": round(self.price_diff_percent, 6),
            "estimated_profit_pct": round(self.estimated_profit, 6),
            "buy_from": "primary" if self.buy_from_primary else "secondary",
        }


class SkipReason(Enum):
    """Why a pool or pool pair produced no opportunity during a scan."""

    NO_MATCH = "no_matching_pool"
    NOT_QUOTED = "not_quoted_in_quote_asset"
    ZERO_LIQUIDITY = "zero_liquidity"
    DEGENERATE_PAIR = "degenerate_pair"
    BELOW_THRESHOLD = "below_threshold"


@dataclass(frozen=True)
class QuoteAsset:
    """The asset prices are expressed in (USDC on the agent's chain)."""

    address: str
    symbol: str = "USDC"
    decimals: int = 6

    def matches(self, address: str) -> bool:
        return address.lower() == self.address.lower()
