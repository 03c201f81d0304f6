"""
Cross-venue opportunity scanner.

Pairs each primary-venue pool with the secondary-venue pool listing the same
unordered token pair, prices both against the quote asset and keeps the
divergences above the minimum profit threshold. Pools that cannot be priced
are reported as skips in the result instead of raising.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from cross_venue_arbitrage.utils import bps_to_pct, format_profit, get_logger

from .normalizer import base_decimals_for, price_outcome
from .types import ArbitrageOpportunity, PoolReserves, QuoteAsset, SkipReason

logger = get_logger(__name__)

MIN_PROFIT_BPS = 10  # 0.10%
MAX_SLIPPAGE_BPS = 50  # 0.50%


@dataclass(frozen=True)
class SkippedPair:
    pair_address: str
    reason: SkipReason
    venue: str = ""


@dataclass
class ScanResult:
    """Ranked opportunities plus every pool that was passed over, and why."""

    opportunities: List[ArbitrageOpportunity] = field(default_factory=list)
    skipped: List[SkippedPair] = field(default_factory=list)

    @property
    def best(self) -> Optional[ArbitrageOpportunity]:
        return self.opportunities[0] if self.opportunities else None

    def skipped_by(self, reason: SkipReason) -> List[SkippedPair]:
        return [s for s in self.skipped if s.reason == reason]


def price_diff_percent(primary_price: float, secondary_price: float) -> float:
    """|p - s| / min(p, s) * 100"""
    return abs(primary_price - secondary_price) / min(primary_price, secondary_price) * 100


def ranking_key(opp: ArbitrageOpportunity) -> Tuple[float, float, str, str]:
    """Descending estimated profit, then larger divergence, then stable address order."""
    return (
        -opp.estimated_profit,
        -opp.price_diff_percent,
        opp.token_address.lower(),
        opp.primary_pool.pair_address.lower(),
    )


def index_by_token_set(pools: Sequence[PoolReserves]) -> Dict[FrozenSet[str], PoolReserves]:
    """First pool per unordered token pair."""
    index: Dict[FrozenSet[str], PoolReserves] = {}
    for pool in pools:
        index.setdefault(pool.token_set, pool)
    return index


class OpportunityScanner:
    """
    Detects price divergences for the same token across two venues.

    Args:
        quote: Asset prices are expressed in
        min_profit_bps: Divergences at or below this are discarded
        max_slippage_bps: Haircut subtracted to get the estimated profit
        token_decimals: Decimals per base token address (default 18)
    """

    def __init__(
        self,
        quote: QuoteAsset,
        min_profit_bps: int = MIN_PROFIT_BPS,
        max_slippage_bps: int = MAX_SLIPPAGE_BPS,
        token_decimals: Optional[Mapping[str, int]] = None,
    ):
        self.quote = quote
        self.min_profit_bps = min_profit_bps
        self.max_slippage_bps = max_slippage_bps
        self.token_decimals = dict(token_decimals or {})

    @property
    def min_diff_pct(self) -> float:
        return bps_to_pct(self.min_profit_bps)

    @property
    def slippage_pct(self) -> float:
        return bps_to_pct(self.max_slippage_bps)

    def evaluate(
        self, primary: PoolReserves, secondary: PoolReserves
    ) -> Tuple[Optional[ArbitrageOpportunity], Optional[SkippedPair]]:
        """Price one matched pair of pools; exactly one side of the tuple is set."""
        prices = []
        for pool in (primary, secondary):
            outcome = price_outcome(pool, self.quote, self.token_decimals)
            if not outcome.ok:
                return None, SkippedPair(pool.pair_address, outcome.skip, pool.venue)
            prices.append(outcome.price)

        primary_price, secondary_price = prices

        diff = price_diff_percent(primary_price, secondary_price)
        if diff <= self.min_diff_pct:
            return None, SkippedPair(
                primary.pair_address, SkipReason.BELOW_THRESHOLD, primary.venue
            )

        token_address = primary.other_token(self.quote.address)
        opportunity = ArbitrageOpportunity(
            token_address=token_address,
            token_symbol=primary.symbol_of(token_address),
            primary_pool=primary,
            secondary_pool=secondary,
            primary_price=primary_price,
            secondary_price=secondary_price,
            price_diff_percent=diff,
            buy_from_primary=primary_price < secondary_price,
            estimated_profit=diff - self.slippage_pct,
            price_scale=10.0 ** (
                base_decimals_for(primary, self.quote, self.token_decimals)
                - self.quote.decimals
            ),
        )
        return opportunity, None

    def scan(
        self,
        primary_pools: Sequence[PoolReserves],
        secondary_pools: Sequence[PoolReserves],
    ) -> ScanResult:
        """
        Rank opportunities between the two venues.

        Negative estimated profits are kept so the decision step sees them;
        ``ArbitrageOpportunity.is_attractive`` marks them.
        """
        result = ScanResult()
        if not primary_pools or not secondary_pools:
            logger.debug(
                f"Nothing to scan (primary={len(primary_pools)}, "
                f"secondary={len(secondary_pools)})"
            )
            return result

        secondary_index = index_by_token_set(secondary_pools)

        for primary in primary_pools:
            secondary = secondary_index.get(primary.token_set)
            if secondary is None:
                result.skipped.append(
                    SkippedPair(primary.pair_address, SkipReason.NO_MATCH, primary.venue)
                )
                continue

            opportunity, skipped = self.evaluate(primary, secondary)
            if skipped is not None:
                logger.debug(f"Skipping {primary.pair_name}: {skipped.reason.value}")
                result.skipped.append(skipped)
                continue

            logger.info(
                f"{opportunity.token_symbol or opportunity.token_address}: "
                f"primary {opportunity.primary_display_price:.6g} vs secondary "
                f"{opportunity.secondary_display_price:.6g} "
                f"({opportunity.price_diff_percent:.2f}%, "
                f"est. {format_profit(opportunity.estimated_profit)})"
            )
            result.opportunities.append(opportunity)

        result.opportunities.sort(key=ranking_key)
        return result
