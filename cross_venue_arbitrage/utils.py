"""
Common helpers for the cross-venue arbitrage engine: logging, basis-point
arithmetic and log-line formatting.
"""

import logging
from typing import Optional, Union

BPS_DENOMINATOR = 10_000


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


# Basis point utilities
def bps_to_pct(bps: Union[int, float]) -> float:
    """Convert basis points to percent. 15 bps -> 0.15%"""
    return bps / 100.0


def apply_bps(amount: int, bps: int) -> int:
    """Take `bps` basis points of an integer amount, rounding down."""
    return (amount * bps) // BPS_DENOMINATOR


def format_profit(pct: float) -> str:
    """Format a percentage with a sign prefix, e.g. 1.234 -> '+1.23%'."""
    if pct >= 0:
        return f"+{pct:.2f}%"
    return f"{pct:.2f}%"


def short_address(address: Optional[str]) -> str:
    """Abbreviate an address for log lines: 0x1234…abcd."""
    if not address:
        return "-"
    if len(address) <= 12:
        return address
    return f"{address[:6]}…{address[-4:]}"


def get_logger(name: str, level: Union[str, int] = logging.INFO) -> logging.Logger:
    """
    Get a module logger with the engine's line format.

    The CLI's ``logging_config.setup`` replaces these per-logger handlers
    with a single root handler.
    """
    logger = logging.getLogger(name)

    if logger.level == logging.NOTSET:
        logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        logger.addHandler(handler)

    return logger
