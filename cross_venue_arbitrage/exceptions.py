"""
Exception hierarchy for the cross-venue arbitrage engine.

Errors are grouped by where they may surface: data and collaborator errors are
absorbed inside a cycle, execution and ledger errors terminate it and are
reported to the operator.
"""

from typing import Any, Dict, Optional


class CrossVenueArbitrageError(Exception):
    """Base exception for all cross-venue arbitrage related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(CrossVenueArbitrageError):
    """Raised when there are configuration-related issues."""

    pass


class ValidationError(CrossVenueArbitrageError):
    """Raised when validation of data or configuration fails."""

    pass


class DataError(CrossVenueArbitrageError):
    """Raised when pool, account or price data is malformed or unusable."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        symbol: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.source = source
        self.symbol = symbol


class ZeroLiquidityError(DataError, ZeroDivisionError):
    """Raised when a price is derived from a pool with an empty reserve."""

    def __init__(
        self,
        message: str,
        pair_address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, source=pair_address, details=details)
        self.pair_address = pair_address


class NetworkError(CrossVenueArbitrageError):
    """Raised when network or connectivity issues occur."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code


class OracleError(NetworkError):
    """Raised when the advisory oracle fails or returns an unusable answer."""

    pass


class ExecutionError(CrossVenueArbitrageError):
    """Raised when trade execution fails."""

    def __init__(
        self,
        message: str,
        strategy: Optional[str] = None,
        task_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.strategy = strategy
        self.task_id = task_id


class SubmissionError(ExecutionError):
    """Raised when the relay rejects or cannot receive a submission."""

    pass


class ExecutionInProgressError(ExecutionError):
    """Raised when a submission is attempted while another task is outstanding."""

    pass


class SettlementError(ExecutionError):
    """Raised when a submitted task reaches a non-successful terminal state."""

    def __init__(
        self,
        message: str,
        state: Optional[str] = None,
        task_id: Optional[str] = None,
        transaction_hash: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, task_id=task_id, details=details)
        self.state = state
        self.transaction_hash = transaction_hash


class ExecutionRevertedError(SettlementError):
    """The relayed transaction reverted on-chain."""

    pass


class ExecutionCancelledError(SettlementError):
    """The relay cancelled the task."""

    pass


class SettlementTimeoutError(SettlementError):
    """The polling budget was exhausted before a terminal state was seen."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        task_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, state="TimedOut", task_id=task_id, details=details)
        self.attempts = attempts


class LedgerWriteError(CrossVenueArbitrageError):
    """Raised when a settled trade could not be persisted."""

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.tx_hash = tx_hash
