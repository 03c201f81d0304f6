"""
DEX adapter modules for different venue sources.
"""

from .snapshot import load_snapshot_pools
from .v2 import (
    TokenSymbolCache,
    fetch_pool_async,
    get_pair,
    list_factory_pairs,
    load_pair,
)

__all__ = [
    "fetch_pool_async",
    "get_pair",
    "list_factory_pairs",
    "load_pair",
    "load_snapshot_pools",
    "TokenSymbolCache",
]
