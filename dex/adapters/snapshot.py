"""
Snapshot adapter: venue pools from a local deployments JSON file.

Expected layout::

    {
      "factory": "0x...",
      "pairs": {
        "stETH": {"address": "0x...", "token0": "0x...", "token1": "0x...",
                  "reserve0": "1000000", "reserve1": "500"}
      }
    }

The pair key is the base token's symbol; the quote side is labelled with the
quote asset's symbol.
"""

import json
from pathlib import Path
from typing import List, Union

from cross_venue_arbitrage.exceptions import DataError
from cross_venue_arbitrage.utils import get_logger

from ..types import PoolReserves, QuoteAsset

logger = get_logger(__name__)

# Advisory metadata the snapshot file does not carry
SNAPSHOT_APY = 5.0
SNAPSHOT_SLASHING_HISTORY = 0.0


def load_snapshot_pools(
    path: Union[str, Path], quote: QuoteAsset, venue: str = "snapshot"
) -> List[PoolReserves]:
    """
    Parse every pair of a deployments snapshot.

    Pairs with malformed entries are dropped and logged; the rest are kept.

    Raises:
        DataError: If the file is missing or is not valid JSON
    """
    path = Path(path)
    try:
        with open(path, "r") as f:
            deployments = json.load(f)
    except FileNotFoundError as e:
        raise DataError(f"Snapshot file not found: {path}", source=venue) from e
    except json.JSONDecodeError as e:
        raise DataError(f"Invalid JSON in snapshot {path}: {e}", source=venue) from e

    pools: List[PoolReserves] = []
    for symbol, pair in (deployments.get("pairs") or {}).items():
        try:
            token0 = pair["token0"]
            token1 = pair["token1"]
            pools.append(
                PoolReserves.from_dict(
                    {
                        "pairAddress": pair["address"],
                        "token0": token0,
                        "token1": token1,
                        "reserve0": pair.get("reserve0") or "0",
                        "reserve1": pair.get("reserve1") or "0",
                        "token0Symbol": quote.symbol if quote.matches(token0) else symbol,
                        "token1Symbol": quote.symbol if quote.matches(token1) else symbol,
                        "apy": SNAPSHOT_APY,
                        "slashingHistory": SNAPSHOT_SLASHING_HISTORY,
                        "totalSupply": pair.get("totalSupply"),
                    },
                    venue=venue,
                )
            )
        except (KeyError, TypeError) as e:
            logger.info(f"Skipping snapshot pair {symbol}: missing {e}")
        except DataError as e:
            logger.info(f"Skipping snapshot pair {symbol}: {e}")

    logger.debug(f"Loaded {len(pools)} pools from snapshot {path}")
    return pools
