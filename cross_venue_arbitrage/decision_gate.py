"""
Decision gate: turns the advisory oracle's free-text verdict into execute/skip.

The verdict rule is a case-insensitive substring test: execute only if the
answer contains "yes" and does not contain "no". An answer containing both
is a skip, and so is every oracle failure.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence

from dex.types import ArbitrageOpportunity

from .interfaces import AdvisoryOracle
from .models import AgentAccount
from .utils import get_logger

logger = get_logger(__name__)

DEFAULT_ORACLE_TIMEOUT_SEC = 30.0


@dataclass(frozen=True)
class Decision:
    should_execute: bool
    rationale: str
    opportunity: Optional[ArbitrageOpportunity] = None
    oracle_failed: bool = False


def interpret_verdict(response: str) -> bool:
    """True only for an answer that says "yes" and never says "no"."""
    lowered = response.lower()
    return "yes" in lowered and "no" not in lowered


def build_prompt(
    opportunity: ArbitrageOpportunity, account: AgentAccount, quote_symbol: str = "USDC"
) -> str:
    direction = "Primary" if opportunity.buy_from_primary else "Secondary"
    estimate = f"{opportunity.estimated_profit:.2f}%"
    if not opportunity.is_attractive:
        estimate += " (unattractive after slippage)"

    return (
        "Analyze this arbitrage opportunity:\n"
        f"- Token: {opportunity.token_symbol} ({opportunity.token_address})\n"
        f"- Price in Primary Pool: {opportunity.primary_display_price:.6g} {quote_symbol}\n"
        f"- Price in Secondary Pool: {opportunity.secondary_display_price:.6g} {quote_symbol}\n"
        f"- Price Difference: {opportunity.price_diff_percent:.2f}%\n"
        f"- Buy from {direction} Pool\n"
        f"- Estimated Profit: {estimate}\n"
        "\n"
        "Agent Info:\n"
        f"- {quote_symbol} Balance: {account.quote.formatted} {quote_symbol}\n"
        f"- Strategy: {int(account.trade_strategy)}\n"
        f"- Risk Level: {account.risk_level}\n"
        "\n"
        "Should I execute this arbitrage? Provide a brief analysis and indicate Yes or No.\n"
    )


class DecisionGate:
    """
    Asks the oracle about the best opportunity only.

    Args:
        oracle: Advisory oracle collaborator
        timeout: Seconds before an unanswered query counts as a failure
        require_positive_estimate: Skip without asking when the best
            opportunity's estimated profit is not positive
    """

    def __init__(
        self,
        oracle: AdvisoryOracle,
        timeout: float = DEFAULT_ORACLE_TIMEOUT_SEC,
        require_positive_estimate: bool = False,
        quote_symbol: str = "USDC",
    ):
        self.oracle = oracle
        self.timeout = timeout
        self.require_positive_estimate = require_positive_estimate
        self.quote_symbol = quote_symbol

    async def decide(
        self, opportunities: Sequence[ArbitrageOpportunity], account: AgentAccount
    ) -> Decision:
        if not opportunities:
            return Decision(False, "No arbitrage opportunities found")

        best = opportunities[0]
        if self.require_positive_estimate and not best.is_attractive:
            return Decision(
                False,
                f"Best opportunity is unattractive after slippage "
                f"({best.estimated_profit:.2f}%)",
                best,
            )

        prompt = build_prompt(best, account, self.quote_symbol)
        try:
            response = await asyncio.wait_for(self.oracle.analyze(prompt), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Oracle did not answer within {self.timeout}s, skipping")
            return Decision(False, "Oracle timed out", best, oracle_failed=True)
        except Exception as e:
            logger.warning(f"Oracle unavailable, skipping: {e}")
            return Decision(False, f"Error connecting to oracle: {e}", best, oracle_failed=True)

        if not isinstance(response, str):
            logger.warning(f"Oracle returned non-text answer: {response!r}")
            return Decision(False, "Malformed oracle response", best, oracle_failed=True)

        should_execute = interpret_verdict(response)
        logger.info(
            f"Oracle verdict for {best.token_symbol}: "
            f"{'EXECUTE' if should_execute else 'SKIP'}"
        )
        return Decision(should_execute, response, best)
