"""Tests for reserve normalization."""

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from cross_venue_arbitrage.exceptions import DataError, ZeroLiquidityError
from dex.normalizer import (
    DEFAULT_BASE_DECIMALS,
    base_decimals_for,
    pool_price,
    price_outcome,
    quote_price,
    quote_value,
)
from dex.types import PoolReserves, SkipReason

from tests.helpers import QUOTE_ADDRESS, TOKEN_A, TOKEN_B, make_pool

reserves = st.integers(min_value=1, max_value=10**36)


class TestQuotePrice:
    def test_quote_is_token0(self):
        assert quote_price(1_000_000, 500, QUOTE_ADDRESS, TOKEN_A, QUOTE_ADDRESS, 6, 18) == 2000.0

    def test_quote_is_token1(self):
        assert quote_price(500, 1_000_000, TOKEN_A, QUOTE_ADDRESS, QUOTE_ADDRESS, 6, 18) == 2000.0

    def test_quote_address_match_is_case_insensitive(self):
        mixed = "0x" + "Cd" * 20
        assert quote_price(10, 5, mixed, TOKEN_A, mixed.lower(), 6, 18) == 2.0

    def test_not_quoted_returns_none(self):
        assert quote_price(1, 1, TOKEN_A, TOKEN_B, QUOTE_ADDRESS, 6, 18) is None

    @pytest.mark.parametrize("r0,r1", [(0, 500), (1_000_000, 0), (0, 0)])
    def test_zero_reserve_raises_division_error(self, r0, r1):
        with pytest.raises(ZeroDivisionError):
            quote_price(r0, r1, QUOTE_ADDRESS, TOKEN_A, QUOTE_ADDRESS, 6, 18)

    def test_zero_reserve_error_names_the_pair(self):
        with pytest.raises(ZeroLiquidityError) as exc_info:
            quote_price(0, 1, QUOTE_ADDRESS, TOKEN_A, QUOTE_ADDRESS, 6, 18, pair_address="0xpair")
        assert exc_info.value.pair_address == "0xpair"

    def test_huge_reserves_stay_exact_until_the_final_ratio(self):
        # Both reserves exceed float precision; their ratio is exactly 3
        price = quote_price(3 * (10**40 + 1), 10**40 + 1, QUOTE_ADDRESS, TOKEN_A, QUOTE_ADDRESS, 6, 18)
        assert price == 3.0

    @given(r0=reserves, r1=reserves)
    def test_prices_are_reciprocal_when_quote_side_flips(self, r0, r1):
        as_token0 = quote_price(r0, r1, TOKEN_A, TOKEN_B, TOKEN_A, 18, 18)
        as_token1 = quote_price(r0, r1, TOKEN_A, TOKEN_B, TOKEN_B, 18, 18)
        assert math.isclose(as_token0 * as_token1, 1.0, rel_tol=1e-9)


class TestPoolPrice:
    def test_pool_price(self, quote):
        pool = make_pool("0xpair", TOKEN_A, 1_000_000, 520)
        assert pool_price(pool, quote) == pytest.approx(1923.0769230769)

    def test_base_decimals_default(self, quote):
        pool = make_pool("0xpair", TOKEN_A, 1, 1)
        assert base_decimals_for(pool, quote) == DEFAULT_BASE_DECIMALS
        assert base_decimals_for(pool, quote, {TOKEN_B: 8}) == DEFAULT_BASE_DECIMALS

    def test_base_decimals_from_mapping(self, quote):
        pool = make_pool("0xpair", TOKEN_A, 1, 1, quote_first=False)
        assert base_decimals_for(pool, quote, {TOKEN_A.upper().replace("0X", "0x"): 8}) == 8


class TestPriceOutcome:
    def test_ok(self, quote):
        outcome = price_outcome(make_pool("0xpair", TOKEN_A, 1_000_000, 500), quote)
        assert outcome.ok
        assert outcome.price == 2000.0

    def test_zero_liquidity(self, quote):
        outcome = price_outcome(make_pool("0xpair", TOKEN_A, 0, 500), quote)
        assert not outcome.ok
        assert outcome.skip == SkipReason.ZERO_LIQUIDITY

    def test_not_quoted(self, quote):
        pool = PoolReserves("0xpair", TOKEN_A, TOKEN_B, 10, 10)
        assert price_outcome(pool, quote).skip == SkipReason.NOT_QUOTED

    def test_degenerate_pair(self, quote):
        pool = PoolReserves("0xpair", QUOTE_ADDRESS, QUOTE_ADDRESS, 10, 10)
        assert price_outcome(pool, quote).skip == SkipReason.DEGENERATE_PAIR


class TestQuoteValue:
    def test_values_token_amount_in_quote_units(self, quote):
        pool = make_pool("0xpair", TOKEN_A, 1_000_000, 500)
        assert quote_value(pool, TOKEN_A, 10, quote) == 20_000

    def test_truncates_toward_zero(self, quote):
        pool = make_pool("0xpair", TOKEN_A, 1_000_000, 3)
        assert quote_value(pool, TOKEN_A, 1, quote) == 333_333
        assert quote_value(pool, TOKEN_A, -1, quote) == -333_333

    def test_zero_liquidity(self, quote):
        with pytest.raises(ZeroLiquidityError):
            quote_value(make_pool("0xpair", TOKEN_A, 0, 3), TOKEN_A, 1, quote)

    def test_token_not_in_pool(self, quote):
        with pytest.raises(DataError):
            quote_value(make_pool("0xpair", TOKEN_A, 1, 3), TOKEN_B, 1, quote)
