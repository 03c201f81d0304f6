"""
Logging configuration for cleaner output.

Usage:
    import logging_config
    logging_config.setup()
"""

import logging
import sys


def setup(level=logging.INFO):
    """
    Configure root logging for the engine CLI.

    - Suppresses per-request logs from the aiohttp metrics server
    - Quiets web3 / urllib3 RPC chatter
    - Uses shorter timestamp format (HH:MM:SS instead of full datetime)
    """

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)

    # Minimal format: time + level + message
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-7s | %(message)s", datefmt="%H:%M:%S"
    )
    console.setFormatter(formatter)
    root.addHandler(console)

    # Suppress noisy loggers
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    # Application loggers follow the requested level and log through root only
    for name, logger in list(logging.root.manager.loggerDict.items()):
        if not isinstance(logger, logging.Logger):
            continue
        if name.split(".")[0] in ("cross_venue_arbitrage", "dex"):
            logger.handlers.clear()
            logger.setLevel(level)
    logging.getLogger("__main__").setLevel(level)
    logging.getLogger("cross_venue_arbitrage").setLevel(level)
    logging.getLogger("dex").setLevel(level)


def setup_minimal():
    """
    Only warnings and errors.
    """
    setup(level=logging.WARNING)


def setup_debug():
    """
    Verbose logging for debugging, including RPC and HTTP access logs.
    """
    setup(level=logging.DEBUG)
    logging.getLogger("aiohttp.access").setLevel(logging.INFO)
    logging.getLogger("web3").setLevel(logging.INFO)
