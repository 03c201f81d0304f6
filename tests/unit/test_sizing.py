"""Tests for execution sizing."""

import pytest

from cross_venue_arbitrage.models import TradeAction, TradeStrategy
from cross_venue_arbitrage.sizing import (
    ExecutionSizer,
    minimum_amount_out,
    risk_bps_for,
)

from tests.helpers import QUOTE_ADDRESS, TOKEN_A, make_account


@pytest.mark.parametrize("level,bps", [(1, 1000), (2, 1500), (3, 2000), (4, 2500)])
def test_risk_bps_for(level, bps):
    assert risk_bps_for(level) == bps


@pytest.mark.parametrize("level", [0, 5, -1])
def test_risk_bps_for_out_of_range(level):
    with pytest.raises(ValueError):
        risk_bps_for(level)


class TestSize:
    @pytest.mark.parametrize(
        "level,amount", [(1, 100_000_000), (2, 150_000_000), (3, 200_000_000), (4, 250_000_000)]
    )
    def test_amount_by_risk_level(self, level, amount):
        sizing = ExecutionSizer().size(make_account(quote_balance=1_000_000_000, risk_level=level))
        assert sizing.amount == amount
        assert sizing.min_profit_floor == amount // 1000
        assert not sizing.is_noop

    def test_integer_truncation(self):
        sizing = ExecutionSizer().size(make_account(quote_balance=1_234_567, risk_level=3))
        assert sizing.amount == 246_913
        assert sizing.min_profit_floor == 246

    def test_zero_balance_is_noop(self):
        assert ExecutionSizer().size(make_account(quote_balance=0)).is_noop

    def test_dust_balance_rounds_to_noop(self):
        assert ExecutionSizer().size(make_account(quote_balance=9)).is_noop

    def test_custom_profit_floor(self):
        sizing = ExecutionSizer(min_profit_bps=50).size(make_account(quote_balance=1_000_000))
        assert sizing.min_profit_floor == 500


class TestMinimumAmountOut:
    def test_applies_tolerance(self):
        assert minimum_amount_out(10_000, 50) == 9_950
        assert minimum_amount_out(10_000, 0) == 10_000

    def test_rounds_down(self):
        assert minimum_amount_out(999, 50) == 994

    @pytest.mark.parametrize("bps", [-1, 10_001])
    def test_rejects_out_of_range(self, bps):
        with pytest.raises(ValueError):
            minimum_amount_out(100, bps)


class TestPrepareAction:
    def test_lrt_profile_scales_swap_and_widens_slippage(self):
        account = make_account(strategy=TradeStrategy.BEST_LRT)
        action = TradeAction("swap", QUOTE_ADDRESS, TOKEN_A, 1_000_000, 500)

        prepared, slippage = ExecutionSizer().prepare_action(action, account)

        assert prepared.amount_a == 980_000
        assert prepared.amount_b == 490
        assert slippage == 60

    def test_slippage_grows_with_reward_tokens(self):
        account = make_account(strategy=TradeStrategy.BEST_LRT_WITH_LIQUIDITY)
        action = TradeAction("addLiquidity", TOKEN_A, QUOTE_ADDRESS, 100, 100)

        _, slippage = ExecutionSizer().prepare_action(action, account, reward_tokens=3)

        assert slippage == 80

    def test_lst_profile(self):
        account = make_account(strategy=TradeStrategy.BEST_LST)
        action = TradeAction("swap", QUOTE_ADDRESS, TOKEN_A, 10_000, 10_000)

        prepared, slippage = ExecutionSizer().prepare_action(action, account)

        assert prepared.amount_a == 9_900
        assert slippage == 50

    def test_remove_liquidity_is_not_scaled(self):
        account = make_account(strategy=TradeStrategy.BEST_LST_WITH_LIQUIDITY)
        action = TradeAction("removeLiquidity", TOKEN_A, QUOTE_ADDRESS, 777, 0)

        prepared, _ = ExecutionSizer().prepare_action(action, account)

        assert prepared == action

    def test_slippage_capped_at_full_range(self):
        sizer = ExecutionSizer(max_slippage_bps=9_995)
        account = make_account(strategy=TradeStrategy.BEST_LRT)
        assert sizer.slippage_bps_for(account.profile, reward_tokens=5) == 10_000
