"""
Uniswap V2 style adapter for constant-product AMM venues.

Reads pair reserves, enumerates factory pairs and resolves token symbols.
All RPC calls are synchronous web3 calls pushed to the default thread pool
so the event loop is never blocked.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

from web3 import Web3
from web3.exceptions import Web3Exception

from cross_venue_arbitrage.utils import get_logger

from ..abi import ERC20_ABI, UNISWAP_V2_FACTORY_ABI, UNISWAP_V2_PAIR_ABI
from ..types import PoolReserves

logger = get_logger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _is_rate_limit(error_msg: str) -> bool:
    return (
        "429" in error_msg
        or "Too Many Requests" in error_msg
        or "-32005" in error_msg  # BSC/Ethereum rate limit code
        or "limit exceeded" in error_msg.lower()
    )


async def _call_with_retry(
    fn: Callable[[], Any], what: str, max_retries: int = 3
) -> Any:
    """
    Run a blocking contract call in the thread pool, backing off on rate limits.

    Raises:
        Web3Exception: If the call fails with a non-rate-limit error, or
            still fails after all retries
    """
    loop = asyncio.get_running_loop()
    last_error: Optional[Exception] = None

    for attempt in range(max_retries):
        try:
            return await loop.run_in_executor(None, fn)
        except Exception as e:
            last_error = e
            error_msg = str(e)

            if _is_rate_limit(error_msg) and attempt < max_retries - 1:
                # Exponential backoff with jitter: 2s, 4s, 8s
                wait_time = (2 ** (attempt + 1)) + (attempt * 0.5)
                logger.debug(f"Rate limited on {what}, retrying in {wait_time}s")
                await asyncio.sleep(wait_time)
                continue

            raise Web3Exception(f"Failed to {what}: {error_msg}") from e

    raise Web3Exception(
        f"Failed to {what} after {max_retries} retries: {last_error}"
    ) from last_error


async def fetch_pool_async(
    web3: Web3, pair_addr: str, max_retries: int = 3
) -> Tuple[str, str, int, int]:
    """
    Fetch token addresses and reserves from a Uniswap V2 style pair.

    Args:
        web3: Web3 instance connected to the chain
        pair_addr: Checksummed address of the pair contract
        max_retries: Maximum number of retry attempts (default: 3)

    Returns:
        Tuple of (token0_addr, token1_addr, reserve0, reserve1)

    Raises:
        Web3Exception: If RPC calls fail after all retries
        ValueError: If pair address is invalid
    """
    if not Web3.is_checksum_address(pair_addr):
        raise ValueError(f"Invalid pair address: {pair_addr}")

    pair = web3.eth.contract(address=pair_addr, abi=UNISWAP_V2_PAIR_ABI)
    what = f"fetch pool {pair_addr}"

    token0, token1, reserves = await asyncio.gather(
        _call_with_retry(pair.functions.token0().call, what, max_retries),
        _call_with_retry(pair.functions.token1().call, what, max_retries),
        _call_with_retry(pair.functions.getReserves().call, what, max_retries),
    )

    return (
        Web3.to_checksum_address(token0),
        Web3.to_checksum_address(token1),
        int(reserves[0]),
        int(reserves[1]),
    )


async def fetch_total_supply(web3: Web3, pair_addr: str) -> Optional[int]:
    """LP token supply of a pair, or None if the call fails."""
    pair = web3.eth.contract(address=pair_addr, abi=UNISWAP_V2_PAIR_ABI)
    try:
        return int(
            await _call_with_retry(
                pair.functions.totalSupply().call, f"read totalSupply of {pair_addr}"
            )
        )
    except Web3Exception as e:
        logger.debug(str(e))
        return None


async def list_factory_pairs(
    web3: Web3, factory_addr: str, max_pairs: Optional[int] = None
) -> List[str]:
    """
    Enumerate pair addresses registered with a V2 factory.

    Args:
        web3: Web3 instance connected to the chain
        factory_addr: Address of the factory contract
        max_pairs: Only the first ``max_pairs`` pairs are returned

    Returns:
        Checksummed pair addresses in factory order
    """
    factory = web3.eth.contract(
        address=Web3.to_checksum_address(factory_addr), abi=UNISWAP_V2_FACTORY_ABI
    )
    total = await _call_with_retry(
        factory.functions.allPairsLength().call, f"read allPairsLength of {factory_addr}"
    )
    count = total if max_pairs is None else min(total, max_pairs)
    logger.debug(f"Factory {factory_addr} has {total} pairs, reading {count}")

    addresses = await asyncio.gather(
        *[
            _call_with_retry(
                factory.functions.allPairs(i).call, f"read allPairs({i})"
            )
            for i in range(count)
        ]
    )
    return [Web3.to_checksum_address(a) for a in addresses]


async def get_pair(
    web3: Web3, factory_addr: str, token_a: str, token_b: str
) -> Optional[str]:
    """
    Look up the pair for two tokens.

    Returns:
        Checksummed pair address, or None if the factory has no such pair
    """
    factory = web3.eth.contract(
        address=Web3.to_checksum_address(factory_addr), abi=UNISWAP_V2_FACTORY_ABI
    )
    pair = await _call_with_retry(
        factory.functions.getPair(
            Web3.to_checksum_address(token_a), Web3.to_checksum_address(token_b)
        ).call,
        f"getPair({token_a}, {token_b})",
    )
    if not pair or pair.lower() == ZERO_ADDRESS:
        return None
    return Web3.to_checksum_address(pair)


class TokenSymbolCache:
    """Caches ERC20 symbols; a failed lookup falls back to the short address."""

    def __init__(self, web3: Web3):
        self.web3 = web3
        self._symbols: Dict[str, str] = {}

    async def symbol(self, token_addr: str) -> str:
        key = token_addr.lower()
        if key in self._symbols:
            return self._symbols[key]

        token = self.web3.eth.contract(
            address=Web3.to_checksum_address(token_addr), abi=ERC20_ABI
        )
        try:
            symbol = await _call_with_retry(
                token.functions.symbol().call, f"read symbol of {token_addr}"
            )
        except Web3Exception as e:
            logger.debug(str(e))
            symbol = token_addr[:8]

        self._symbols[key] = symbol
        return symbol


async def load_pair(
    web3: Web3,
    pair_addr: str,
    symbols: TokenSymbolCache,
    venue: str = "",
) -> PoolReserves:
    """Read one pair into a PoolReserves, including symbols and LP supply."""
    token0, token1, r0, r1 = await fetch_pool_async(web3, pair_addr)
    sym0, sym1, supply = await asyncio.gather(
        symbols.symbol(token0),
        symbols.symbol(token1),
        fetch_total_supply(web3, pair_addr),
    )
    return PoolReserves(
        pair_address=pair_addr,
        token0=token0,
        token1=token1,
        reserve0=r0,
        reserve1=r1,
        token0_symbol=sym0,
        token1_symbol=sym1,
        total_supply=supply,
        venue=venue,
    )
