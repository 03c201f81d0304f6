"""
Reserve normalization: raw AMM reserves -> comparable quote-per-base prices.

All reserve arithmetic happens on Python integers (exact rationals via
``fractions.Fraction``); only the final ratio is converted to float, so
prices from venues with very different reserve magnitudes stay comparable.
"""

from dataclasses import dataclass
from fractions import Fraction
from typing import Mapping, Optional

from cross_venue_arbitrage.exceptions import ZeroLiquidityError

from .types import PoolReserves, QuoteAsset, SkipReason

DEFAULT_BASE_DECIMALS = 18


def _ratio(
    quote_reserve: int,
    base_reserve: int,
    quote_decimals: int,
    base_decimals: int,
    pair_address: Optional[str] = None,
) -> Fraction:
    if base_reserve == 0 or quote_reserve == 0:
        raise ZeroLiquidityError(
            f"Pool {pair_address or '?'} has no tradable liquidity "
            f"(quote={quote_reserve}, base={base_reserve})",
            pair_address=pair_address,
        )

    # (quote * 10^base_dec) / (base * 10^quote_dec), then rescaled back by
    # 10^(base_dec - quote_dec) to display magnitude
    price = Fraction(
        quote_reserve * 10**base_decimals, base_reserve * 10**quote_decimals
    )
    return price / Fraction(10) ** (base_decimals - quote_decimals)


def quote_price(
    reserve0: int,
    reserve1: int,
    token0: str,
    token1: str,
    quote_address: str,
    quote_decimals: int,
    base_decimals: int,
    pair_address: Optional[str] = None,
) -> Optional[float]:
    """
    Price of the base token in units of the quote asset.

    Args:
        reserve0: Raw reserve of token0
        reserve1: Raw reserve of token1
        token0: Address of token0
        token1: Address of token1
        quote_address: Address of the quote asset
        quote_decimals: Decimals of the quote asset
        base_decimals: Decimals of the base token
        pair_address: Used in error messages only

    Returns:
        Quote-per-base price, or None when neither token is the quote asset

    Raises:
        ZeroLiquidityError: If either reserve is zero
    """
    quote = quote_address.lower()
    if token0.lower() == quote:
        quote_reserve, base_reserve = reserve0, reserve1
    elif token1.lower() == quote:
        quote_reserve, base_reserve = reserve1, reserve0
    else:
        return None

    return float(
        _ratio(quote_reserve, base_reserve, quote_decimals, base_decimals, pair_address)
    )


def base_decimals_for(
    pool: PoolReserves,
    quote: QuoteAsset,
    token_decimals: Optional[Mapping[str, int]] = None,
) -> int:
    if not token_decimals:
        return DEFAULT_BASE_DECIMALS
    base = pool.token1 if quote.matches(pool.token0) else pool.token0
    for address, decimals in token_decimals.items():
        if address.lower() == base.lower():
            return decimals
    return DEFAULT_BASE_DECIMALS


def pool_price(
    pool: PoolReserves,
    quote: QuoteAsset,
    token_decimals: Optional[Mapping[str, int]] = None,
) -> Optional[float]:
    """Normalize a pool's reserves against the quote asset (see quote_price)."""
    return quote_price(
        pool.reserve0,
        pool.reserve1,
        pool.token0,
        pool.token1,
        quote.address,
        quote.decimals,
        base_decimals_for(pool, quote, token_decimals),
        pair_address=pool.pair_address,
    )


@dataclass(frozen=True)
class PriceOutcome:
    """Either a price or the reason the pool cannot be priced."""

    price: Optional[float] = None
    skip: Optional[SkipReason] = None

    @property
    def ok(self) -> bool:
        return self.price is not None


def price_outcome(
    pool: PoolReserves,
    quote: QuoteAsset,
    token_decimals: Optional[Mapping[str, int]] = None,
) -> PriceOutcome:
    """
    Non-raising variant of pool_price for callers that skip unpriceable pools.
    """
    if pool.token0.lower() == pool.token1.lower():
        return PriceOutcome(skip=SkipReason.DEGENERATE_PAIR)
    try:
        price = pool_price(pool, quote, token_decimals)
    except ZeroLiquidityError:
        return PriceOutcome(skip=SkipReason.ZERO_LIQUIDITY)
    if price is None:
        return PriceOutcome(skip=SkipReason.NOT_QUOTED)
    return PriceOutcome(price=price)


def quote_value(
    pool: PoolReserves,
    token: str,
    amount: int,
    quote: QuoteAsset,
    token_decimals: Optional[Mapping[str, int]] = None,
) -> int:
    """
    Value of ``amount`` raw units of ``token`` in quote-asset raw units.

    Uses the same ratio as pool_price but keeps it exact, rounding toward
    zero only once at the end.

    Raises:
        ZeroLiquidityError: If the pool has an empty reserve
        DataError: If the token or the quote asset is not in the pool
    """
    quote_reserve = pool.reserve_of(quote.address)
    base_reserve = pool.reserve_of(token)
    ratio = _ratio(
        quote_reserve,
        base_reserve,
        quote.decimals,
        base_decimals_for(pool, quote, token_decimals),
        pool.pair_address,
    )
    value = ratio * amount
    return int(value)
