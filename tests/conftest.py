"""
Shared fixtures for the engine tests.
"""

import pytest
from prometheus_client import CollectorRegistry

from cross_venue_arbitrage.interfaces import FakeClock
from cross_venue_arbitrage.metrics import ArbitrageMetrics
from dex.types import QuoteAsset

from tests.helpers import QUOTE_ADDRESS


@pytest.fixture
def quote():
    return QuoteAsset(address=QUOTE_ADDRESS, symbol="USDC", decimals=6)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    """Create a test-specific registry"""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return ArbitrageMetrics(registry)
