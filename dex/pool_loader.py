"""
Venue pool loading.

Each venue has its own PoolSource (read API, on-chain factory or local
snapshot). The loader is the boundary that turns any source failure into an
empty pool list: a venue being down means "no opportunities this cycle",
never a crashed cycle.
"""

import asyncio
from pathlib import Path
from typing import List, Optional, Tuple, Union

from web3 import Web3
from web3.exceptions import Web3Exception

from cross_venue_arbitrage.exceptions import CrossVenueArbitrageError
from cross_venue_arbitrage.interfaces import PoolSource
from cross_venue_arbitrage.utils import get_logger

from .adapters.snapshot import load_snapshot_pools
from .adapters.v2 import TokenSymbolCache, get_pair, list_factory_pairs, load_pair
from .types import PoolReserves, QuoteAsset

logger = get_logger(__name__)


class FactoryPoolSource:
    """Pools enumerated from a Uniswap V2 style factory on-chain."""

    def __init__(
        self,
        web3: Web3,
        factory_address: str,
        venue: str = "secondary",
        max_pairs: Optional[int] = None,
        max_concurrent: int = 8,
    ):
        self.web3 = web3
        self.factory_address = factory_address
        self.venue = venue
        self.max_pairs = max_pairs
        self.max_concurrent = max_concurrent
        self.symbols = TokenSymbolCache(web3)

    async def fetch_pools(self) -> List[PoolReserves]:
        pair_addresses = await list_factory_pairs(
            self.web3, self.factory_address, self.max_pairs
        )

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def load(pair_addr: str) -> Optional[PoolReserves]:
            async with semaphore:
                try:
                    return await load_pair(self.web3, pair_addr, self.symbols, self.venue)
                except (Web3Exception, ValueError, CrossVenueArbitrageError) as e:
                    logger.info(f"Skipping pair {pair_addr} on {self.venue}: {e}")
                    return None

        results = await asyncio.gather(*[load(addr) for addr in pair_addresses])
        return [pool for pool in results if pool is not None]

    async def get_pair(self, token_a: str, token_b: str) -> Optional[str]:
        """Pair address for two tokens on this venue, or None."""
        return await get_pair(self.web3, self.factory_address, token_a, token_b)


class SnapshotPoolSource:
    """Pools read from a local deployments snapshot file."""

    def __init__(
        self, path: Union[str, Path], quote: QuoteAsset, venue: str = "secondary"
    ):
        self.path = Path(path)
        self.quote = quote
        self.venue = venue

    async def fetch_pools(self) -> List[PoolReserves]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, load_snapshot_pools, self.path, self.quote, self.venue
        )


class VenuePoolLoader:
    """Loads one venue's pools and never raises past its boundary."""

    def __init__(self, name: str, source: PoolSource):
        self.name = name
        self.source = source

    async def load_pools(self) -> List[PoolReserves]:
        try:
            pools = await self.source.fetch_pools()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Venue {self.name} unavailable, treating as empty: {e}")
            return []

        logger.debug(f"Loaded {len(pools)} pools from venue {self.name}")
        return list(pools)


async def load_both(
    primary: VenuePoolLoader, secondary: VenuePoolLoader
) -> Tuple[List[PoolReserves], List[PoolReserves]]:
    """Load both venues concurrently; they are independent reads."""
    primary_pools, secondary_pools = await asyncio.gather(
        primary.load_pools(), secondary.load_pools()
    )
    return primary_pools, secondary_pools
