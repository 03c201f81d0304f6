"""
Cross-Venue Arbitrage Engine.

Detects price divergences for the same token between two AMM venues, asks an
advisory oracle whether to act, executes through a sponsored meta-transaction
relay and records the settled trade with its realized P&L.

The engine itself lives in ``cross_venue_arbitrage.engine``; it is not
re-exported here because the ``dex`` package imports this package's
exceptions and utilities.
"""

from cross_venue_arbitrage.version import __version__

PROJECT_NAME = "cross-venue-arbitrage"
VERSION = __version__

__all__ = ["PROJECT_NAME", "VERSION", "__version__"]
