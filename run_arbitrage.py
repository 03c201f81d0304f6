#!/usr/bin/env python3
"""
Cross-venue arbitrage engine CLI.

Scans two AMM venues for price divergences, consults the advisory oracle and
executes approved trades through the relay.

Usage:
    python3 run_arbitrage.py
    python3 run_arbitrage.py --config configs/arbitrage.yaml
    python3 run_arbitrage.py --config configs/arbitrage.yaml --once
"""

import argparse
import asyncio
import logging
import sys

import logging_config
from cross_venue_arbitrage.bootstrap import check_chain_id, create_engine
from cross_venue_arbitrage.config_loader import load_config, load_secrets
from cross_venue_arbitrage.engine import CycleOutcome
from cross_venue_arbitrage.exceptions import (
    ConfigurationError,
    CrossVenueArbitrageError,
)
from cross_venue_arbitrage.metrics import ArbitrageMetrics

FAILED_OUTCOMES = {
    CycleOutcome.FAILED,
    CycleOutcome.SUBMISSION_FAILED,
    CycleOutcome.EXECUTED_UNRECORDED,
}


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Cross-venue AMM arbitrage engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config
  python3 run_arbitrage.py

  # Single cycle (for testing/CI)
  python3 run_arbitrage.py --config configs/arbitrage.yaml --once
        """,
    )

    parser.add_argument(
        "--config",
        default="configs/arbitrage.yaml",
        help="Path to config YAML file (default: configs/arbitrage.yaml)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Serve Prometheus metrics on this port (overrides config)",
    )

    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)

    config = load_config(args.config)
    secrets = load_secrets(config)

    metrics = ArbitrageMetrics(engine_name=config.name)
    metrics_port = args.metrics_port or config.metrics_port
    if metrics_port:
        await metrics.start_server(port=metrics_port)

    once = args.once or config.once
    runtime = create_engine(config, secrets, metrics=metrics)
    try:
        if runtime.web3 is not None:
            await check_chain_id(runtime.web3, config.relay.chain_id)

        reports = await runtime.engine.run(max_cycles=1 if once else None)
    finally:
        await runtime.close()
        if metrics_port:
            await metrics.stop_server()

    if once and reports and reports[-1].outcome in FAILED_OUTCOMES:
        logger.error(f"Cycle ended with {reports[-1].outcome.value}")
        return 1
    return 0


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)
    logging_config.setup(getattr(logging, args.log_level))

    try:
        return asyncio.run(run(args))
    except ConfigurationError as e:
        print(f"❌ Config error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n\n⏸ Stopped by user")
        return 0
    except CrossVenueArbitrageError as e:
        print(f"❌ Engine failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
