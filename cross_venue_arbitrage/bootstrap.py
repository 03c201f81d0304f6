"""
Production wiring: builds an ArbitrageEngine and its collaborators from a
validated EngineConfig and the resolved secrets.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from web3 import Web3

from dex.pool_loader import FactoryPoolSource, SnapshotPoolSource, VenuePoolLoader
from dex.scanner import OpportunityScanner
from dex.types import QuoteAsset

from .config_loader import Secrets
from .config_schema import EngineConfig, VenueConfig
from .decision_gate import DecisionGate
from .engine import ArbitrageEngine
from .exceptions import ConfigurationError, NetworkError
from .interfaces import AsyncClock, PoolSource, SystemClock
from .ledger import SqliteLedgerStore, TradeLedger
from .metrics import ArbitrageMetrics
from .oracle import ChatCompletionsOracle
from .read_api import ApiAccountReader, ApiPoolSource, ReadApiClient
from .relay import GelatoRelayClient, RelayExecutor
from .sizing import ExecutionSizer
from .utils import get_logger

logger = get_logger(__name__)


@dataclass
class EngineRuntime:
    """An engine plus the network and storage resources it holds open."""

    engine: ArbitrageEngine
    web3: Optional[Web3] = None
    _closers: List[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def close(self):
        for closer in self._closers:
            await closer()
        self._closers.clear()


def build_quote_asset(config: EngineConfig) -> QuoteAsset:
    return QuoteAsset(
        address=config.quote_asset.address,
        symbol=config.quote_asset.symbol,
        decimals=config.quote_asset.decimals,
    )


def _pool_source(
    venue: VenueConfig,
    client: ReadApiClient,
    web3: Optional[Web3],
    quote: QuoteAsset,
) -> PoolSource:
    if venue.source == "api":
        return ApiPoolSource(client, venue=venue.name)
    if venue.source == "factory":
        return FactoryPoolSource(
            web3, venue.factory_address, venue=venue.name, max_pairs=venue.max_pairs
        )
    return SnapshotPoolSource(venue.snapshot_path, quote, venue=venue.name)


async def check_chain_id(web3: Web3, expected: int):
    """
    Raises:
        ConfigurationError: If the RPC endpoint serves a different chain
        NetworkError: If the chain id could not be read
    """
    loop = asyncio.get_running_loop()
    try:
        actual = await loop.run_in_executor(None, lambda: web3.eth.chain_id)
    except Exception as e:
        raise NetworkError(f"Could not read chain id from RPC: {e}") from e
    if actual != expected:
        raise ConfigurationError(
            f"RPC serves chain {actual} but relay is configured for chain {expected}"
        )


def create_engine(
    config: EngineConfig,
    secrets: Secrets,
    metrics: Optional[ArbitrageMetrics] = None,
    clock: Optional[AsyncClock] = None,
) -> EngineRuntime:
    """
    Raises:
        ConfigurationError: If a required secret is missing
    """
    clock = clock or SystemClock()
    quote = build_quote_asset(config)

    if not secrets.sponsor_api_key:
        raise ConfigurationError(
            f"Relay sponsor key not set (expected in ${config.relay.sponsor_key_env})"
        )
    if not secrets.oracle_api_key:
        logger.warning(
            f"${config.oracle.api_key_env} not set; every oracle query will fail and "
            "all opportunities will be skipped"
        )

    web3 = None
    if any(venue.source == "factory" for venue in config.venues):
        if not secrets.rpc_url:
            raise ConfigurationError(
                f"Factory venues need an RPC endpoint (expected in ${config.rpc_url_env})"
            )
        web3 = Web3(Web3.HTTPProvider(secrets.rpc_url))

    api = config.read_api
    read_client = ReadApiClient(
        api.base_url,
        api_key=secrets.read_api_key,
        timeout=api.timeout_sec,
        max_retries=api.max_retries,
        cache_ttl=api.cache_ttl_sec,
        min_request_interval=api.min_request_interval_sec,
        clock=clock,
    )

    primary = VenuePoolLoader(
        config.primary_venue.name,
        _pool_source(config.primary_venue, read_client, web3, quote),
    )
    secondary = VenuePoolLoader(
        config.secondary_venue.name,
        _pool_source(config.secondary_venue, read_client, web3, quote),
    )

    strategy = config.strategy
    scanner = OpportunityScanner(
        quote,
        min_profit_bps=strategy.min_profit_bps,
        max_slippage_bps=strategy.max_slippage_bps,
        token_decimals=config.token_decimals,
    )

    oracle_config = config.oracle
    oracle = ChatCompletionsOracle(
        secrets.oracle_api_key,
        base_url=oracle_config.base_url,
        model=oracle_config.model,
        temperature=oracle_config.temperature,
        max_tokens=oracle_config.max_tokens,
        timeout=oracle_config.timeout_sec,
    )
    gate = DecisionGate(
        oracle,
        timeout=oracle_config.timeout_sec,
        require_positive_estimate=strategy.require_positive_estimate,
        quote_symbol=quote.symbol,
    )

    relay_config = config.relay
    relay_client = GelatoRelayClient(
        secrets.sponsor_api_key,
        base_url=relay_config.base_url,
        timeout=relay_config.timeout_sec,
    )
    executor = RelayExecutor(
        relay_client,
        chain_id=relay_config.chain_id,
        target=Web3.to_checksum_address(relay_config.agent_address),
        clock=clock,
        poll_interval=relay_config.poll_interval_sec,
        max_attempts=relay_config.max_attempts,
        metrics=metrics,
    )

    store = SqliteLedgerStore(config.ledger.path)
    ledger = TradeLedger(
        store,
        quote,
        token_decimals=config.token_decimals,
        record_failures=config.ledger.record_failures,
        clock=clock,
    )

    engine = ArbitrageEngine(
        primary,
        secondary,
        scanner,
        ApiAccountReader(read_client, quote.decimals, config.token_decimals),
        gate,
        ExecutionSizer(strategy.min_profit_bps, strategy.max_slippage_bps),
        executor,
        ledger,
        quote,
        clock=clock,
        cycle_interval=config.cycle_interval_sec,
        metrics=metrics,
    )
    logger.info(
        f"Engine '{config.name}' wired: {primary.name} ({config.primary_venue.source}) vs "
        f"{secondary.name} ({config.secondary_venue.source}), chain {relay_config.chain_id}"
    )
    return EngineRuntime(
        engine=engine,
        web3=web3,
        _closers=[read_client.close, oracle.close, relay_client.close, store.close],
    )
