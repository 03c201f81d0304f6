"""
Execution sizing: account balance and risk tier -> trade size and profit floor.

All arithmetic is integer basis points on raw quote units so the values sent
on-chain never pick up floating-point drift.
"""

from dataclasses import dataclass, replace
from typing import Tuple

from .models import AgentAccount, StrategyProfile, TradeAction
from .utils import BPS_DENOMINATOR, apply_bps, get_logger

logger = get_logger(__name__)

BASE_RISK_BPS = 1_000  # 10% at risk level 1
RISK_STEP_BPS = 500  # +5% per level


@dataclass(frozen=True)
class Sizing:
    """Sized arbitrage: ``amount`` and ``min_profit_floor`` in quote raw units."""

    amount: int
    min_profit_floor: int
    risk_bps: int

    @property
    def is_noop(self) -> bool:
        return self.amount <= 0


def risk_bps_for(risk_level: int) -> int:
    """10% / 15% / 20% / 25% of the balance for risk levels 1-4."""
    if not 1 <= risk_level <= 4:
        raise ValueError(f"risk_level must be in 1..4, got {risk_level}")
    return BASE_RISK_BPS + (risk_level - 1) * RISK_STEP_BPS


def minimum_amount_out(expected: int, slippage_bps: int) -> int:
    """Lowest acceptable output for ``expected`` under ``slippage_bps`` tolerance."""
    if not 0 <= slippage_bps <= BPS_DENOMINATOR:
        raise ValueError(f"slippage_bps out of range: {slippage_bps}")
    return expected * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


class ExecutionSizer:
    """
    Args:
        min_profit_bps: Profit floor as a share of the traded amount
        max_slippage_bps: Base slippage tolerance for swap/liquidity actions
    """

    def __init__(self, min_profit_bps: int = 10, max_slippage_bps: int = 50):
        self.min_profit_bps = min_profit_bps
        self.max_slippage_bps = max_slippage_bps

    def size(self, account: AgentAccount) -> Sizing:
        risk_bps = risk_bps_for(account.risk_level)
        amount = apply_bps(account.quote.balance, risk_bps)
        floor = apply_bps(amount, self.min_profit_bps)
        logger.debug(
            f"Sized {amount} of {account.quote.balance} "
            f"(risk {risk_bps} bps, floor {floor})"
        )
        return Sizing(amount=amount, min_profit_floor=floor, risk_bps=risk_bps)

    def slippage_bps_for(self, profile: StrategyProfile, reward_tokens: int = 1) -> int:
        return min(
            self.max_slippage_bps + profile.extra_slippage_bps * reward_tokens,
            BPS_DENOMINATOR,
        )

    def prepare_action(
        self, action: TradeAction, account: AgentAccount, reward_tokens: int = 1
    ) -> Tuple[TradeAction, int]:
        """
        Apply the account's strategy profile to a pre-decided action.

        Swap and add-liquidity amounts are scaled by the profile's
        ``amount_bps``; LP amounts being removed are left whole.

        Returns:
            The adjusted action and the slippage tolerance (bps) to encode with
        """
        profile = account.profile
        slippage = self.slippage_bps_for(profile, reward_tokens)
        if action.type in ("swap", "addLiquidity"):
            action = replace(
                action,
                amount_a=apply_bps(action.amount_a, profile.amount_bps),
                amount_b=apply_bps(action.amount_b, profile.amount_bps),
            )
        return action, slippage
